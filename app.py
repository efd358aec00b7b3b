from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
import logging

from admin_routes import admin_bp
from errors import SchedulingError
from schedule_routes import schedule_bp
import storage

app = Flask(__name__)

# --- CONFIG ---
app.config.from_mapping(
    DATABASE='timetable.db',
    DATABASE_TIMEOUT=5.0,            # seconds to wait on a locked database
    SCHOOL_TIMEZONE='Asia/Tashkent',
    MAX_GENERATION_DAYS=366,
    LOG_LEVEL='INFO',
)
app.config.from_prefixed_env()   # FLASK_DATABASE=..., FLASK_SCHOOL_TIMEZONE=...
app.json.sort_keys = False

app.register_blueprint(admin_bp)
app.register_blueprint(schedule_bp)
app.teardown_appcontext(storage.close_db)


# --- ERRORS ---
@app.errorhandler(SchedulingError)
def handle_scheduling_error(error):
    if error.status_code >= 500:
        app.logger.error('%s: %s', error.kind, error.message)
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'status': 'error', 'kind': 'http', 'message': error.description}), error.code


# --- DATABASE ---
def init_db():
    with app.app_context():
        storage.init_db(storage.get_db())


if __name__ == '__main__':
    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    init_db()
    app.logger.info('Timetable service using %s', app.config['DATABASE'])
    app.run(debug=True)
