from .user import User
from .holding import Holding
from .alert import PriceAlert
from .notification import Notification
