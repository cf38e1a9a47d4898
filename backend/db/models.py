"""Import every model so Base.metadata knows all tables and string relationships resolve."""
from db.database import Base  # noqa: F401
from db.code_sequence import CodeSequence  # noqa: F401
from db.client import Client  # noqa: F401
from db.supplier import Supplier  # noqa: F401
from db.storage_zone import StorageZone  # noqa: F401
from db.article import Article  # noqa: F401
from db.order import Order, OrderItem  # noqa: F401
from db.delivery import Delivery, DeliveryItem  # noqa: F401
from db.invoice import Invoice  # noqa: F401
from db.payment import Payment  # noqa: F401
from db.inventory.lot import Lot  # noqa: F401
from db.inventory.stock import Stock  # noqa: F401
from db.inventory.reservation import StockReservation  # noqa: F401
from db.inventory.operation import InventoryOperation, InventoryOperationItem  # noqa: F401
