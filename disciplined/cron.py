import sys

from disciplined import create_app
from disciplined.push import PushConfigError, get_push_transport
from disciplined.scheduler import NotificationScheduler


def run_push_cron(app, now=None):
    transport = get_push_transport()
    scheduler = NotificationScheduler.from_config(app.config, transport)
    return scheduler.run(now=now)


def main() -> int:
    app = create_app()
    with app.app_context():
        try:
            run_push_cron(app)
        except PushConfigError as exc:
            app.logger.error("push-cron not configured: %s", exc)
            return 1
        except Exception:
            app.logger.exception("push-cron failed")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
