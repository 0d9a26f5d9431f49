# Pydantic request and response models for the health and import endpoints.
