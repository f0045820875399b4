# 按照依赖顺序导入
from .base import BaseModel
from .auth import User
from .biz import Category, Supplier, Product
from .stock_in import StockIn, StockInItem
from .batch import BatchLot
from .stock_out import StockOut, StockOutItem, StockOutAllocation
from .inventory_check import InventoryCheck, InventoryCheckItem
from .stock import InventoryLog
from .sys import ActivityLog
