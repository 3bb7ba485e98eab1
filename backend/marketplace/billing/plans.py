"""Product catalogue: credit packs and monthly subscriptions."""

from dataclasses import dataclass

from marketplace.config import settings


@dataclass(frozen=True)
class Product:
    """Something a user can buy on either payment rail."""

    product_id: str
    name: str
    amount: int  # in minor units of ``currency``
    currency: str
    credits: int  # for subscriptions, the plan allowance is read from settings instead
    subscription_type: str | None = None

    @property
    def is_subscription(self) -> bool:
        return self.subscription_type is not None

    @property
    def store_product_id(self) -> str:
        return f"{settings.store_product_prefix}.{self.product_id}"


PRODUCTS: dict[str, Product] = {
    "listing.single": Product("listing.single", "1 listing credit", 500, "XOF", credits=1),
    "listing.pack5": Product("listing.pack5", "Pack of 5 listing credits", 2250, "XOF", credits=5),
    "listing.pack10": Product("listing.pack10", "Pack of 10 listing credits", 4000, "XOF", credits=10),
    "sub.pro.monthly": Product(
        "sub.pro.monthly", "Pro subscription", 12000, "XOF", credits=0, subscription_type="pro"
    ),
    "sub.premium.monthly": Product(
        "sub.premium.monthly", "Premium subscription", 25000, "XOF", credits=0, subscription_type="premium"
    ),
}

SUBSCRIPTION_TYPES: tuple[str, ...] = ("pro", "premium")

# The only product that pays for one listing publication on the native rail
SINGLE_LISTING_PRODUCT = "listing.single"


def get_product(product_id: str) -> Product | None:
    """Look up a product by catalogue id, short alias or App Store id.

    ``single``, ``listing.single`` and ``com.lazone.listing.single`` all
    resolve to the same product.
    """
    prefix = f"{settings.store_product_prefix}."
    if product_id.startswith(prefix):
        product_id = product_id[len(prefix):]
    if product_id in PRODUCTS:
        return PRODUCTS[product_id]
    return PRODUCTS.get(f"listing.{product_id}")
