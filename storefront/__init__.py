"""Cart and checkout service: cart store, order coordinator, payment adapters."""
