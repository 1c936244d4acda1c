"""FastAPI dependencies shared by the routers (authentication lives in ``auth``)."""
