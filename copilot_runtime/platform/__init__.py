"""Service infrastructure: settings, observability and the FastAPI server.

Only this layer reads settings; the runtime core takes explicit options.
"""
