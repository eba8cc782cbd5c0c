"""
SportBot query intelligence service.

    flask --app app:create_app run
    python app.py
"""
import logging

from flask import Flask, jsonify

from config import Config
from logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(db_path=None, classifier=None, tracker=None, registry=None,
               start_scheduler=True, prompts_ttl=None):
    """
    Build the Flask app and its query intelligence services.

    Every service can be injected; defaults come from Config.
    """
    from intelligence import InsightGenerator, LearningScheduler, PatternSuggester, init_query_tables
    from query_classifier import get_default_classifier
    from query_routes import query_bp
    from query_tracker import QueryTracker
    from suggested_prompts import SuggestedPrompts

    configure_logging()

    app = Flask(__name__)
    app.secret_key = Config.FLASK_SECRET_KEY

    init_query_tables(db_path)

    services = {
        'classifier': classifier or get_default_classifier(),
        'registry': registry,
        'tracker': tracker or QueryTracker(db_path),
        'insights': InsightGenerator(db_path),
        'suggester': PatternSuggester(db_path),
        'prompts': SuggestedPrompts(db_path, ttl_seconds=prompts_ttl),
        'scheduler': LearningScheduler(db_path=db_path),
    }
    app.extensions['query_intelligence'] = services
    app.register_blueprint(query_bp)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    if start_scheduler:
        services['scheduler'].start()

    logger.info("SportBot query intelligence app ready")
    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=Config.PORT, debug=Config.DEBUG)
