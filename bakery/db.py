# bakery/db.py
import sqlite3

from .config import settings

DB_PATH = settings.db_path


def get_connection():
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            first_name TEXT NOT NULL,
            last_name TEXT DEFAULT '',
            email TEXT UNIQUE NOT NULL,
            phone TEXT DEFAULT '',
            password_hash TEXT NOT NULL,
            role TEXT DEFAULT 'customer',
            rewards INTEGER DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Orders. shipping_address and payment_result are JSON documents.
    cur.execute("""
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_number TEXT UNIQUE NOT NULL,
            user_id INTEGER NOT NULL,
            shipping_address TEXT NOT NULL,
            payment_method TEXT NOT NULL,
            items_price REAL NOT NULL DEFAULT 0,
            tax_price REAL NOT NULL DEFAULT 0,
            shipping_price REAL NOT NULL DEFAULT 0,
            discount_amount REAL NOT NULL DEFAULT 0,
            coupon_code TEXT,
            rewards_used INTEGER DEFAULT 0,
            total_price REAL NOT NULL DEFAULT 0,
            payment_status TEXT NOT NULL DEFAULT 'pending',
            status TEXT NOT NULL DEFAULT 'pending',
            payment_result TEXT,
            gateway_session_id TEXT,
            delivery_type TEXT DEFAULT 'delivery',
            notes TEXT DEFAULT '',
            rewards_earned INTEGER DEFAULT 0,
            estimated_delivery TEXT,
            paid_at TEXT,
            delivered_at TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id)
        )
    """)

    cur.execute("""
        CREATE INDEX IF NOT EXISTS idx_orders_user
        ON orders(user_id)
    """)

    cur.execute("""
        CREATE INDEX IF NOT EXISTS idx_orders_gateway_session
        ON orders(gateway_session_id)
    """)

    # Items of the order (snapshot of the cart at purchase time)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS order_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id INTEGER NOT NULL,
            product_id TEXT NOT NULL,
            name TEXT NOT NULL,
            price REAL NOT NULL,
            quantity INTEGER NOT NULL,
            image TEXT,
            FOREIGN KEY(order_id) REFERENCES orders(id)
        )
    """)

    cur.execute("""
        CREATE INDEX IF NOT EXISTS idx_order_items_order
        ON order_items(order_id)
    """)

    conn.commit()
    conn.close()
