"""Schema v1 - Initial trading schema.

This version includes tables for:
- Users (display fields and bump rate limiting)
- Categories (static two-level tree)
- Items and their sale lifecycle
- Transaction evidences and shippings
- Runtime configuration (gateway URLs)
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'account_name', 'type': 'VARCHAR(128)', 'nullable': False, 'unique': True},
                {'name': 'hashed_password', 'type': 'BYTEA', 'nullable': False, 'default': "''"},
                {'name': 'address', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'num_sell_items', 'type': 'INT4', 'nullable': False, 'default': '0'},
                {'name': 'last_bump', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': "'2000-01-01 00:00:00+00'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'categories',
            'columns': [
                {'name': 'id', 'type': 'INT4', 'primary_key': True},
                {'name': 'parent_id', 'type': 'INT4', 'nullable': False, 'default': '0'},
                {'name': 'category_name', 'type': 'VARCHAR(191)', 'nullable': False}
            ]
        },
        {
            'name': 'items',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'seller_id', 'type': 'INT8', 'nullable': False},
                {'name': 'buyer_id', 'type': 'INT8'},  # NULL until bought
                {'name': 'status', 'type': 'VARCHAR(16)', 'nullable': False},
                {'name': 'name', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'price', 'type': 'INT4', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'image_name', 'type': 'VARCHAR(191)', 'nullable': False, 'default': "''"},
                {'name': 'category_id', 'type': 'INT4', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                "status IN ('on_sale', 'trading', 'sold_out', 'stop', 'cancel')",
                "price BETWEEN 100 AND 1000000",
                "(buyer_id IS NOT NULL) = (status IN ('trading', 'sold_out'))"
            ],
            'indexes': [
                {'name': 'idx_items_seller', 'columns': ['seller_id', 'created_at']},
                {'name': 'idx_items_buyer', 'columns': ['buyer_id', 'created_at']},
                {'name': 'idx_items_category', 'columns': ['category_id', 'created_at']},
                {'name': 'idx_items_status', 'columns': ['status', 'created_at']}
            ]
        },
        {
            'name': 'transaction_evidences',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'seller_id', 'type': 'INT8', 'nullable': False},
                {'name': 'buyer_id', 'type': 'INT8', 'nullable': False},
                {'name': 'status', 'type': 'VARCHAR(16)', 'nullable': False},
                {'name': 'item_id', 'type': 'INT8', 'nullable': False},
                {'name': 'item_name', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'item_price', 'type': 'INT4', 'nullable': False},
                {'name': 'item_description', 'type': 'TEXT', 'nullable': False},
                {'name': 'item_category_id', 'type': 'INT4', 'nullable': False},
                {'name': 'item_root_category_id', 'type': 'INT4', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                "status IN ('wait_shipping', 'wait_done', 'done')"
            ],
            'foreign_keys': [
                {'columns': ['item_id'], 'references': 'items(id)'}
            ],
            'indexes': [
                # At most one open evidence per item
                {
                    'name': 'idx_evidences_open_item',
                    'columns': ['item_id'],
                    'unique': True,
                    'where': "status <> 'done'"
                },
                {'name': 'idx_evidences_item', 'columns': ['item_id']}
            ]
        },
        {
            'name': 'shippings',
            'columns': [
                {'name': 'transaction_evidence_id', 'type': 'INT8', 'primary_key': True},
                {'name': 'status', 'type': 'VARCHAR(16)', 'nullable': False},
                {'name': 'item_name', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'item_id', 'type': 'INT8', 'nullable': False},
                {'name': 'reserve_id', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'reserve_time', 'type': 'INT8', 'nullable': False},
                {'name': 'to_address', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'to_name', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'from_address', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'from_name', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'img_binary', 'type': 'BYTEA', 'nullable': False, 'default': "''"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                "status IN ('initial', 'wait_pickup', 'shipping', 'done')"
            ],
            'foreign_keys': [
                {'columns': ['transaction_evidence_id'], 'references': 'transaction_evidences(id)'}
            ]
        },
        {
            'name': 'configs',
            'columns': [
                {'name': 'name', 'type': 'VARCHAR(191)', 'primary_key': True},
                {'name': 'val', 'type': 'VARCHAR(255)', 'nullable': False}
            ]
        }
    ]
}
