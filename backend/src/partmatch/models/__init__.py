"""SQLAlchemy models for partmatch"""

from .alias import AliasSource, ProductAlias
from .base import Base, PortableJSONB
from .product import Product
from .product_embedding import ProductEmbedding
from .training_example import TrainingExample, TrainingQuality, TrainingSource

__all__ = [
    "Base",
    "PortableJSONB",
    "Product",
    "ProductAlias",
    "AliasSource",
    "TrainingExample",
    "TrainingQuality",
    "TrainingSource",
    "ProductEmbedding",
]
