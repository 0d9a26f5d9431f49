# Route modules registered by `src.api.app.create_app`: health checks and saved-list imports.
