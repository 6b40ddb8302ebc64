"""
Storefront Order Flow Demo
Walks a customer from registration to a placed order, then has the admin
complete it and read the dashboard.

Start the server with a seeded admin and demo catalog first:

    ENVIRONMENT=development SEED_ADMIN_EMAIL=admin@example.com \
    SEED_ADMIN_PASSWORD=admin123 SEED_DEMO_CATALOG=true \
    uvicorn storefront.main:app
"""

import requests

BASE = 'http://localhost:8000'
ADMIN_EMAIL = 'admin@example.com'
ADMIN_PASSWORD = 'admin123'


def login(email, password):
    resp = requests.post(f'{BASE}/api/v1/auth/login', data={
        'username': email,
        'password': password
    })
    resp.raise_for_status()
    return {'Authorization': f"Bearer {resp.json()['access_token']}"}


print('=' * 50)
print('STOREFRONT ORDER FLOW DEMO')
print('=' * 50)

# 1. Register customer
print('\n1. REGISTER CUSTOMER')
resp = requests.post(f'{BASE}/api/v1/auth/register', json={
    'email': 'john@example.com',
    'password': 'password123',
    'name': 'John Doe'
})
print(f'   Status: {resp.status_code}')

# 2. Login
print('\n2. LOGIN')
headers = login('john@example.com', 'password123')
print(f"   Token: {headers['Authorization'][7:27]}...")

# 3. Browse products
print('\n3. BROWSE PRODUCTS')
page = requests.get(f'{BASE}/api/v1/products').json()
for p in page['items'][:3]:
    print(f"   - {p['title']} by {p['author']}: ${p['price']} (stock: {p['stock_quantity']})")
first, second = page['items'][0], page['items'][1]

# 4. Fill the cart
print('\n4. ADD TO CART')
requests.post(f'{BASE}/api/v1/cart/items', json={'product_id': first['id'], 'quantity': 2}, headers=headers)
cart = requests.post(f'{BASE}/api/v1/cart/items', json={'product_id': second['id']}, headers=headers).json()
print(f"   {cart['message']}")
for item in cart['items']:
    print(f"      - {item['product_title']} x{item['quantity']} = ${item['line_total']}")
print(f"   Cart total: ${cart['total_amount']}")

# 5. Checkout
print('\n5. CHECKOUT')
resp = requests.post(f'{BASE}/api/v1/cart/checkout', headers=headers)
print(f'   Status: {resp.status_code}')
if resp.status_code != 200:
    print(f"   Rejected: {resp.json()['detail']}")
    raise SystemExit(1)
order = resp.json()['order']
print(f"   Order ID: {order['id']}  Status: {order['status']}")

# 6. Admin completes the order
print('\n6. ADMIN COMPLETES ORDER')
admin_headers = login(ADMIN_EMAIL, ADMIN_PASSWORD)
resp = requests.put(f"{BASE}/api/v1/orders/{order['id']}/status", json={
    'status': 'Completed'
}, headers=admin_headers)
print(f"   {resp.json()['message']}")

# 7. Check updated stock
print('\n7. CHECK UPDATED STOCK')
product = requests.get(f"{BASE}/api/v1/products/{first['id']}").json()
print(f"   {product['title']}: {product['stock_quantity']} remaining (was {first['stock_quantity']})")

# 8. Dashboard
print('\n8. DASHBOARD')
dashboard = requests.get(f'{BASE}/api/v1/admin/dashboard', headers=admin_headers).json()
print(f"   Revenue: ${dashboard['total_revenue']}  Orders: {dashboard['total_orders']}")
for label, value in zip(dashboard['revenue_labels'], dashboard['revenue_data']):
    print(f'      {label}: ${value}')

print('\n' + '=' * 50)
print('ORDER FLOW COMPLETE!')
print('=' * 50)
