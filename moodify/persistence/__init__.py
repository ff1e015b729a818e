from .gateway import InMemoryGateway, PersistenceGateway, SupabaseGateway

__all__ = ["PersistenceGateway", "SupabaseGateway", "InMemoryGateway"]
