"""
Photo variant microservice package.

Exposes the content-store accessor, the image probe/encode helpers, the
variant derivation pipeline, the RabbitMQ queue worker and the FastAPI
ingestion application.
"""
