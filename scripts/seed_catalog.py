#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

import requests

PRODUCTS = [
    {"name": "Heavyweight Tee", "price": 4900, "stock": {"S": 10, "M": 12, "L": 8, "XL": 4}},
    {"name": "Logo Hoodie", "price": 9500, "stock": {"S": 5, "M": 6, "L": 6, "XL": 2}},
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a running storefront through the admin API")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    args = parser.parse_args()

    http = requests.Session()
    login = http.post(
        f"{args.base_url}/api/auth/session",
        json={"email": args.email, "password": args.password},
        timeout=30,
    )
    login.raise_for_status()

    created = []
    for entry in PRODUCTS:
        resp = http.post(
            f"{args.base_url}/admin/products",
            json={"name": entry["name"], "price": entry["price"]},
            timeout=30,
        )
        resp.raise_for_status()
        product = resp.json()
        stock = http.put(
            f"{args.base_url}/admin/products/{product['id']}/variants",
            json={"variants": [{"size": size, "stock": qty} for size, qty in entry["stock"].items()]},
            timeout=30,
        )
        stock.raise_for_status()
        created.append({"id": product["id"], "name": product["name"], "variants": stock.json()["variants"]})

    print(json.dumps(created, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
