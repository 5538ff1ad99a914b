import logging
import traceback

# cPanel/Passenger looks for 'application' object
try:
    from app import create_app
    application = create_app()
except Exception:
    # Startup failures go to a file readable via FTP/File Manager
    with open('passenger_crash.log', 'w') as f:
        f.write(traceback.format_exc())
    logging.getLogger(__name__).exception("Application failed to start")
    raise

if __name__ == '__main__':
    application.run()
