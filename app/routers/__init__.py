"""
routers/ — FastAPI route modules.

quote_requests, orders and conversations serve logged-in users;
webhooks serves the email workflow service. Routers resolve the entity,
check organization scope, call one service function and shape the dict
response. Domain errors propagate to the handlers in main.py.
"""
