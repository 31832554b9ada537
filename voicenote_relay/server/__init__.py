"""HTTP layer: FastAPI webhook endpoints and inbound message dispatch."""
