"""外部ベクトル検索サービス連携。"""

from .pinecone import PineconeVectorClient, VectorServiceError, vector_id_for

__all__ = ["PineconeVectorClient", "VectorServiceError", "vector_id_for"]
