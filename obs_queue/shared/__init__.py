"""Storage layer shared by the EventSub client, services and API."""
