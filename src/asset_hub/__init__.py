def main() -> None:
    """Entry point for the application."""
    from asset_hub.api.main import main as api_main

    api_main()
