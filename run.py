"""Application entry point.

Run the Flask application with environment-based configuration.

Environment Variables:
    FLASK_ENV: Set to 'production' for production mode, 'development' for dev mode
    FLASK_DEBUG: Set to '0' to disable debug mode (alternative to FLASK_ENV)
    HOST: Server host address (default: 0.0.0.0)
    PORT: Server port (default: 8080)
    WORKER_ID: Worker slot; set per process when several workers share a host

Examples:
    # Single process
    python run.py

    # Two workers publishing their metrics to each other
    WORKER_ID=0 PORT=8080 python run.py
    WORKER_ID=1 PORT=8081 python run.py
    # Then scrape: http://localhost:8080/metrics/instance
"""

from imageboard import create_app

app = create_app()

if __name__ == "__main__":
    # Get configuration from app.config (set by config.py)
    host = app.config.get('HOST', '0.0.0.0')
    port = app.config.get('PORT', 8080)
    debug = app.config.get('DEBUG', False)

    # The reloader would fork a second process bound to the same metrics socket
    app.run(host=host, port=port, debug=debug, use_reloader=False)
