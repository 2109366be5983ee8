"""Meeting/chat platform REST client."""
