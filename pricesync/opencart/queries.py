"""
SQL statements for the OpenCart schema.

Table names carry the store's configurable prefix ({p}); every value is
passed as a driver parameter.
"""

PING = "SELECT 1 AS test"

SSL_STATUS = """
SHOW SESSION STATUS WHERE Variable_name IN ('Ssl_cipher', 'Ssl_version')
"""

CUSTOMER_GROUPS = """
SELECT cg.customer_group_id, MIN(cgd.name) AS name, cg.sort_order
FROM {p}customer_group cg
LEFT JOIN {p}customer_group_description cgd
    ON cgd.customer_group_id = cg.customer_group_id
GROUP BY cg.customer_group_id, cg.sort_order
ORDER BY cg.sort_order, cg.customer_group_id
"""

PRODUCT_BY_SKU = """
SELECT product_id FROM {p}product WHERE sku = %s ORDER BY product_id LIMIT 1
"""

# The IN list placeholders are generated per chunk
SKUS_IN = """
SELECT DISTINCT sku FROM {p}product WHERE sku IN ({placeholders})
"""

PRODUCTS_BY_SKUS = """
SELECT product_id, sku FROM {p}product WHERE sku IN ({placeholders}) ORDER BY product_id
"""

PRODUCT_VALUES = """
SELECT product_id, sku, price, quantity FROM {p}product WHERE product_id = %s
"""

PRODUCT_VALUES_FOR_UPDATE = """
SELECT product_id, sku, price, quantity FROM {p}product WHERE product_id = %s FOR UPDATE
"""

GROUP_PRICE = """
SELECT product_discount_id, price FROM {p}product_discount
WHERE product_id = %s AND customer_group_id = %s AND quantity = 1
ORDER BY priority, product_discount_id
LIMIT 1
"""

UPDATE_PRICE = """
UPDATE {p}product SET price = %s, date_modified = NOW() WHERE product_id = %s
"""

UPDATE_QUANTITY = """
UPDATE {p}product SET quantity = %s, date_modified = NOW() WHERE product_id = %s
"""

UPDATE_GROUP_PRICE = """
UPDATE {p}product_discount SET price = %s WHERE product_discount_id = %s
"""

INSERT_GROUP_PRICE = """
INSERT INTO {p}product_discount (product_id, customer_group_id, quantity, priority, price)
VALUES (%s, %s, 1, 1, %s)
"""

DELETE_GROUP_PRICE = """
DELETE FROM {p}product_discount
WHERE product_id = %s AND customer_group_id = %s AND quantity = 1
"""

CREATE_BACKUP_TABLE = """
CREATE TABLE IF NOT EXISTS {p}{table} (
    backup_id INT NOT NULL AUTO_INCREMENT,
    backup_name VARCHAR(191) NOT NULL,
    product_id INT NOT NULL,
    sku VARCHAR(64) NOT NULL,
    price DECIMAL(15,4) NULL,
    quantity INT NULL,
    tier_prices TEXT NULL,
    created_at DATETIME NOT NULL,
    PRIMARY KEY (backup_id),
    KEY idx_backup_name (backup_name)
)
"""

INSERT_BACKUP_ROW = """
INSERT INTO {p}{table} (backup_name, product_id, sku, price, quantity, tier_prices, created_at)
VALUES (%s, %s, %s, %s, %s, %s, %s)
"""

BACKUP_ROWS = """
SELECT product_id, sku, price, quantity, tier_prices FROM {p}{table}
WHERE backup_name = %s ORDER BY backup_id
"""
