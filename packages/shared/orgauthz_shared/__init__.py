"""Request and response schemas shared between the engine and its outer bindings."""
