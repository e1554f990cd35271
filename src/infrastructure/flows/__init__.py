from src.infrastructure.flows.in_memory import InMemoryFlowRepository
from src.infrastructure.flows.postgres import PostgresFlowRepository

__all__ = ["InMemoryFlowRepository", "PostgresFlowRepository"]
