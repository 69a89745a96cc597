# Import every model so metadata (create_all, Flask-Migrate autogenerate) sees all tables
from .user import User  # noqa: F401
from .pet import Pet  # noqa: F401
from .qr_code import QRCode  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .reward_redemption import RewardRedemption  # noqa: F401
from .referral import Referral  # noqa: F401
from .order import PetTagOrder, UserPetTagOrder  # noqa: F401
