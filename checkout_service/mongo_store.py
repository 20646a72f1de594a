"""
mongo_store.py — MongoDB Implementation of the Document Store

Each method maps to exactly one single-document MongoDB operation, so the
atomicity guarantees required by the checkout core come from the server:

    • try_decrement_stock: find_one_and_update with a `stock >= qty` filter and `$inc`
    • transition_order: status-guarded `$set` + `$push` in one update
    • next_sequence: upserted counter document with `$inc`
"""

import logging

import pymongo
from pymongo import MongoClient, ReturnDocument

from . import config
from .store import DocumentStore

log = logging.getLogger(__name__)


class MongoStore(DocumentStore):
    """
    Document store backed by a MongoDB database.

    Collections: product, address, cart, order, payment, counters.
    """

    def __init__(self, database=None):
        """
        Args:
            database (pymongo.database.Database | None): Database to use. When omitted,
                a client is created from MONGO_URL / DATABASE_NAME. The client connects lazily.
        """
        if database is None:
            client = MongoClient(config.MONGO_URL, tz_aware=True)
            database = client[config.DATABASE_NAME]
        self.db = database

    def ensure_indexes(self):
        self.db["cart"].create_index("customerId", unique=True)
        self.db["order"].create_index("orderNumber", unique=True)
        self.db["order"].create_index([("customerId", pymongo.ASCENDING), ("createdAt", pymongo.DESCENDING)])
        self.db["order"].create_index("items.supplierId")
        self.db["payment"].create_index("orderId", unique=True)
        self.db["payment"].create_index("transactionId", unique=True)
        log.info("MongoDB indexes ensured.")

    # --- products ---

    def get_product(self, product_id):
        return self.db["product"].find_one({"_id": product_id})

    def insert_product(self, doc):
        return self.db["product"].insert_one(doc).inserted_id

    def try_decrement_stock(self, product_id, quantity):
        updated = self.db["product"].find_one_and_update(
            {"_id": product_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
            return_document=ReturnDocument.AFTER,
        )
        return updated is not None

    def increment_stock(self, product_id, quantity):
        res = self.db["product"].update_one({"_id": product_id}, {"$inc": {"stock": quantity}})
        return res.matched_count == 1

    # --- addresses ---

    def get_address(self, customer_id, address_id):
        return self.db["address"].find_one({"_id": address_id, "customerId": customer_id})

    def insert_address(self, doc):
        return self.db["address"].insert_one(doc).inserted_id

    # --- carts ---

    def find_cart(self, customer_id):
        return self.db["cart"].find_one({"customerId": customer_id})

    def save_cart(self, doc):
        self.db["cart"].replace_one({"customerId": doc["customerId"]}, doc, upsert=True)

    # --- orders ---

    def insert_order(self, doc):
        return self.db["order"].insert_one(doc).inserted_id

    def find_order(self, order_id):
        return self.db["order"].find_one({"_id": order_id})

    def delete_order(self, order_id):
        self.db["order"].delete_one({"_id": order_id})

    def update_order(self, order_id, fields):
        return self.db["order"].find_one_and_update(
            {"_id": order_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    def transition_order(self, order_id, from_statuses, fields, history_entry):
        return self.db["order"].find_one_and_update(
            {"_id": order_id, "status": {"$in": list(from_statuses)}},
            {"$set": fields, "$push": {"statusHistory": history_entry}},
            return_document=ReturnDocument.AFTER,
        )

    def find_orders(self, customer_id=None, supplier_id=None, status=None, skip=0, limit=10):
        query = {}
        if customer_id is not None:
            query["customerId"] = customer_id
        if supplier_id is not None:
            query["items.supplierId"] = supplier_id
        if status is not None:
            query["status"] = status
        cursor = self.db["order"].find(query).sort("createdAt", pymongo.DESCENDING).skip(skip).limit(limit)
        return list(cursor), self.db["order"].count_documents(query)

    # --- payments ---

    def insert_payment(self, doc):
        return self.db["payment"].insert_one(doc).inserted_id

    def find_payment(self, payment_id):
        return self.db["payment"].find_one({"_id": payment_id})

    def find_payment_by_order(self, order_id):
        return self.db["payment"].find_one({"orderId": order_id})

    def delete_payment(self, payment_id):
        self.db["payment"].delete_one({"_id": payment_id})

    def update_payment(self, payment_id, fields, from_statuses=None):
        query = {"_id": payment_id}
        if from_statuses is not None:
            query["status"] = {"$in": list(from_statuses)}
        return self.db["payment"].find_one_and_update(
            query,
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    def find_payments(self, customer_id, status=None, skip=0, limit=10):
        query = {"customerId": customer_id}
        if status is not None:
            query["status"] = status
        cursor = self.db["payment"].find(query).sort("createdAt", pymongo.DESCENDING).skip(skip).limit(limit)
        return list(cursor), self.db["payment"].count_documents(query)

    # --- sequences ---

    def next_sequence(self, name):
        counter = self.db["counters"].find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]
