#!/usr/bin/env python3
"""
Access Governance Server
Flask API for access requests, approvals, access templates and the audit trail
"""

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
import logging
import os
from pathlib import Path
from datetime import datetime
import secrets

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger('access_governance')

app = Flask(__name__)

cors_origins = os.environ.get('CORS_ORIGINS')
if cors_origins:
    CORS(app, supports_credentials=True,
         origins=[o.strip() for o in cors_origins.split(',') if o.strip()])
else:
    CORS(app, supports_credentials=True)

# Secret key (generate a secure one for production)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', secrets.token_hex(32))

# Database configuration
database_url = os.environ.get('DATABASE_URL', f'sqlite:///{Path(__file__).parent}/access_governance.db')

# Fix Heroku's postgres:// scheme (should be postgresql://)
if database_url and database_url.startswith('postgres://'):
    database_url = database_url.replace('postgres://', 'postgresql://', 1)

app.config['SQLALCHEMY_DATABASE_URI'] = database_url
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# PostgreSQL-specific connection pool settings
if database_url and database_url.startswith('postgresql://'):
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
        'pool_size': 5,
        'max_overflow': 10,
        'pool_recycle': 300,  # Recycle connections after 5 minutes
        'pool_pre_ping': True,
        'pool_timeout': 30,
        'connect_args': {
            'connect_timeout': 10,
            'keepalives': 1,
            'keepalives_idle': 30,
            'keepalives_interval': 10,
            'keepalives_count': 5
        }
    }
else:
    # SQLite settings (for local dev). Audit writes run on worker threads.
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
        'pool_pre_ping': True,
        'connect_args': {'check_same_thread': False, 'timeout': 15},
    }

# Identity and upstream configuration
app.config['IDENTITY_TOKEN_SECRET'] = os.environ.get('IDENTITY_TOKEN_SECRET')
app.config['GITHUB_APP_ID'] = os.environ.get('GITHUB_APP_ID')
app.config['GITHUB_APP_PRIVATE_KEY'] = os.environ.get('GITHUB_APP_PRIVATE_KEY')
app.config['GITHUB_API_URL'] = os.environ.get('GITHUB_API_URL', 'https://api.github.com')
app.config['UPSTREAM_TIMEOUT_SECONDS'] = float(os.environ.get('UPSTREAM_TIMEOUT_SECONDS', '10'))
app.config['CREDENTIAL_REFRESH_MARGIN_SECONDS'] = float(
    os.environ.get('CREDENTIAL_REFRESH_MARGIN_SECONDS', '60'))

# Audit ledger
app.config['AUDIT_WRITE_TIMEOUT_SECONDS'] = float(os.environ.get('AUDIT_WRITE_TIMEOUT_SECONDS', '5'))
app.config['AUDIT_WORKERS'] = int(os.environ.get('AUDIT_WORKERS', '4'))

if not app.config['IDENTITY_TOKEN_SECRET']:
    logger.warning('IDENTITY_TOKEN_SECRET is not set; all authenticated routes will return 401')

# Import and initialize database
from models import db
db.init_app(app)

# Initialize rate limiter
from rate_limiter import init_limiter
limiter = init_limiter(app)

# Governance services
from core.governance.governance_audit import init_audit_ledger, get_audit_ledger
from core.governance.policy import init_policy_engine
from core.identity.bridge import init_identity_bridge
init_audit_ledger(app)
init_policy_engine(app)
init_identity_bridge(app)


def register_error_handlers(app):
    """Render every error as a JSON body."""
    from core.governance.errors import GovernanceError

    @app.errorhandler(GovernanceError)
    def handle_governance_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({
            'error': e.description,
            'code': (e.name or 'error').lower().replace(' ', '_'),
        }), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception('unhandled error: %s', e)
        db.session.rollback()
        return jsonify({'error': 'Internal server error', 'code': 'internal_error'}), 500


register_error_handlers(app)

# Register access request routes
from routes.access_request_routes import register_access_request_routes
register_access_request_routes(app)

# Register access template routes
from routes.access_template_routes import register_access_template_routes
register_access_template_routes(app)

# Register audit log and repository routes
from routes.audit_routes import register_audit_routes
register_audit_routes(app)


@app.route('/api/health', methods=['GET'])
@limiter.exempt
def health_check():
    """Health check endpoint to verify database connection and audit writes"""
    audit_failures = get_audit_ledger().failure_count
    try:
        db.session.execute(db.text('SELECT 1'))
        db.session.commit()
        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'audit_write_failures': audit_failures,
            'timestamp': datetime.utcnow().isoformat()
        })
    except Exception as e:
        logger.error('health check failed: %s', e)
        db.session.rollback()
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'audit_write_failures': audit_failures,
            'error': str(e),
            'timestamp': datetime.utcnow().isoformat()
        }), 503


if __name__ == '__main__':
    print("=" * 60)
    print("Access Governance Server")
    print("=" * 60)
    print("Server starting on http://localhost:5000")
    print("=" * 60)

    app.run(host='0.0.0.0', port=5000, debug=os.environ.get('FLASK_DEBUG') == '1')
