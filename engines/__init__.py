"""Score reconciliation engines: identity, classification, merge, view, writes, import."""
