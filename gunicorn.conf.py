import os

wsgi_app = "disciplined:create_app()"
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"

# The push cron runs out of process, so web workers only serve the JSON API.
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
timeout = 30

accesslog = "-"
errorlog = "-"
