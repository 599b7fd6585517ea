"""leadledger HTTP API."""
