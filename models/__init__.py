# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .address import Address  # noqa: F401
from .product import Product  # noqa: F401
from .cart import Cart, CartItem  # noqa: F401
from .order import Order, OrderStatus, PaymentMethod, PaymentStatus  # noqa: F401
from .order_item import OrderItem  # noqa: F401
from .order_tracking import OrderTracking  # noqa: F401
from .order_counter import OrderCounter  # noqa: F401
from .push_subscription import PushSubscription  # noqa: F401
from .notification import Notification  # noqa: F401
