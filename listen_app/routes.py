from flask import Blueprint, request, jsonify, current_app, g, send_file
from . import db
from . import analytics
from . import session_store
from .errors import EmptyContentError
from .models import QuizAttempt

api_bp = Blueprint('api', __name__, url_prefix='/api')

ATTEMPT_FIELDS = ('session_id', 'question', 'options', 'user_answer', 'correct_answer', 'is_correct')


def _payload():
    return request.get_json(silent=True) or {}


def _coordinator():
    return current_app.extensions['listen_coordinators'].get(g.user_id)


@api_bp.errorhandler(ValueError)
def handle_value_error(error):
    return jsonify({'error': str(error), 'code': 'ValueError'}), 400


@api_bp.route('/health')
def health():
    return jsonify({'status': 'ok', 'message': 'Listen and Quiz API'})


# --- sessions -------------------------------------------------------------

@api_bp.route('/sessions', methods=['POST'])
def create_session():
    """Persists a text for listening."""
    data = _payload()
    session_id = session_store.create_session(g.user_id, data.get('content_text'), data.get('content_title'))
    return jsonify(session_store.get_session(session_id, g.user_id).to_dict()), 201


@api_bp.route('/sessions')
def sessions_list():
    """Lists past listening sessions, newest first."""
    limit = request.args.get('limit', 20, type=int)
    offset = request.args.get('offset', 0, type=int)
    sessions, total = session_store.list_sessions(g.user_id, limit, offset)
    return jsonify({'sessions': [s.to_dict() for s in sessions], 'total': total})


@api_bp.route('/sessions/<int:session_id>')
def session_detail(session_id):
    return jsonify(session_store.get_session(session_id, g.user_id).to_dict(include_content=True))


# --- quizzes --------------------------------------------------------------

@api_bp.route('/quiz/generate', methods=['POST'])
def generate_quiz():
    """Generates one multiple-choice question about a text excerpt."""
    data = _payload()
    content = data.get('content')
    if not isinstance(content, str):
        raise EmptyContentError("content (text chunk) required")

    generator = current_app.extensions['quiz_generator']
    quiz = generator.generate(content, data.get('difficulty', 'medium'))
    return jsonify(quiz.model_dump())


@api_bp.route('/quiz/attempt', methods=['POST'])
def record_attempt():
    data = _payload()
    missing = [field for field in ATTEMPT_FIELDS if data.get(field) is None]
    if missing:
        return jsonify({'error': f"{', '.join(ATTEMPT_FIELDS)} required", 'missing': missing}), 400

    attempt_id = session_store.record_quiz_attempt(
        g.user_id,
        data['session_id'],
        data['question'],
        data['options'],
        data['user_answer'],
        data['correct_answer'],
        data['is_correct']
    )
    return jsonify(db.session.get(QuizAttempt, attempt_id).to_dict()), 201


@api_bp.route('/quiz/attempts/<int:session_id>')
def attempts_list(session_id):
    attempts = session_store.list_attempts(session_id, g.user_id)
    return jsonify({'attempts': [a.to_dict() for a in attempts]})


# --- analytics ------------------------------------------------------------

@api_bp.route('/analytics/dashboard')
def dashboard():
    return jsonify(analytics.dashboard_summary(g.user_id))


@api_bp.route('/analytics/score-trends')
def score_trends():
    return jsonify({'score_trends': analytics.score_trends(g.user_id)})


# --- live playback --------------------------------------------------------

def _apply_settings(coordinator, data):
    if data.get('speed') is not None:
        coordinator.change_speed(data['speed'])
    if 'voice_id' in data:
        coordinator.change_voice(data['voice_id'])
    if data.get('quiz_interval_minutes') is not None:
        coordinator.set_quiz_interval(data['quiz_interval_minutes'])
    if data.get('difficulty') is not None:
        coordinator.set_difficulty(data['difficulty'])


@api_bp.route('/listen/start', methods=['POST'])
def listen_start():
    """
    Starts or resumes playback. Passing ``session_id`` resumes a stored
    session (its saved text is used when ``text`` is omitted).
    """
    data = _payload()
    coordinator = _coordinator()
    text = data.get('text')
    title = data.get('title')

    if data.get('session_id') is not None:
        stored = session_store.get_session(data['session_id'], g.user_id)
        text = text or stored.content_text
        coordinator.bind_session(stored.id, text, title or stored.content_title)

    _apply_settings(coordinator, data)
    coordinator.start(text, data.get('resume_cursor'), title)
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/pause', methods=['POST'])
def listen_pause():
    coordinator = _coordinator()
    coordinator.pause()
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/state')
def listen_state():
    """Polled by the browser: current utterance, quiz and progress."""
    return jsonify(_coordinator().snapshot())


@api_bp.route('/listen/chunk-complete', methods=['POST'])
def chunk_complete():
    data = _payload()
    coordinator = _coordinator()
    accepted = coordinator.engine.report_complete(int(data.get('generation', -1)))
    return jsonify({'accepted': accepted, 'state': coordinator.snapshot()})


@api_bp.route('/listen/chunk-error', methods=['POST'])
def chunk_error():
    data = _payload()
    coordinator = _coordinator()
    accepted = coordinator.engine.report_error(int(data.get('generation', -1)), data.get('error'))
    return jsonify({'accepted': accepted, 'state': coordinator.snapshot()})


@api_bp.route('/listen/settings', methods=['POST'])
def listen_settings():
    coordinator = _coordinator()
    _apply_settings(coordinator, _payload())
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/quiz/answer', methods=['POST'])
def quiz_answer():
    coordinator = _coordinator()
    coordinator.answer_quiz(_payload().get('key'))
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/quiz/retry', methods=['POST'])
def quiz_retry():
    coordinator = _coordinator()
    coordinator.retry_quiz()
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/quiz/continue', methods=['POST'])
def quiz_continue():
    coordinator = _coordinator()
    coordinator.continue_after_quiz()
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/quiz/skip', methods=['POST'])
def quiz_skip():
    coordinator = _coordinator()
    coordinator.skip_quiz()
    return jsonify(coordinator.snapshot())


@api_bp.route('/listen/audio/<int:generation>')
def chunk_audio(generation):
    """Serves the Speechify rendering of the active chunk, when TTS is configured."""
    rendered = _coordinator().engine.render_audio(generation)
    if rendered is None:
        return jsonify({'error': 'No audio for this utterance'}), 404

    file_path, duration = rendered
    response = send_file(file_path, mimetype='audio/wav')
    response.headers['X-Audio-Duration'] = f"{duration:.2f}"
    return response
