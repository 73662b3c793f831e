from .catalog import User, StockLocation, Product, ProductLocationPrice, PaymentMethod, user_stock_locations
from .inventory import (
    WarehouseStock,
    InventoryMovement,
    InventoryAdjustment,
    MOVEMENT_SALE,
    MOVEMENT_PURCHASE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER,
    MOVEMENT_TYPES,
)
from .purchases import Purchase, PurchaseItem
from .sales import Sale, SaleItem, SaleItemCostAllocation
from .shifts import Shift, ShiftStockSnapshot, SNAPSHOT_START, SNAPSHOT_END

__all__ = [
    'User', 'StockLocation', 'Product', 'ProductLocationPrice', 'PaymentMethod', 'user_stock_locations',
    'WarehouseStock', 'InventoryMovement', 'InventoryAdjustment',
    'MOVEMENT_SALE', 'MOVEMENT_PURCHASE', 'MOVEMENT_ADJUSTMENT', 'MOVEMENT_TRANSFER', 'MOVEMENT_TYPES',
    'Purchase', 'PurchaseItem',
    'Sale', 'SaleItem', 'SaleItemCostAllocation',
    'Shift', 'ShiftStockSnapshot', 'SNAPSHOT_START', 'SNAPSHOT_END',
]
