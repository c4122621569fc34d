import os
import re
import html
import math
import hashlib
import logging
import urllib.parse
from collections import Counter, namedtuple
from datetime import datetime, timedelta, timezone
from functools import wraps

import requests
from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from werkzeug.exceptions import HTTPException
from itsdangerous import URLSafeTimedSerializer, BadSignature
from better_profanity import profanity
from dotenv import load_dotenv
import markdown
import bleach

# Load environment variables from .env file
load_dotenv()

def markdown_to_html(markdown_content):
    """Convert markdown audit remarks to safe HTML for the recruitment view"""
    if not markdown_content:
        return ""

    md = markdown.Markdown(extensions=['extra', 'nl2br'])
    html_content = md.convert(markdown_content)

    allowed_tags = [
        'p', 'br', 'strong', 'b', 'em', 'i', 'u', 'ul', 'ol', 'li',
        'blockquote', 'code', 'pre', 'a', 'hr', 'del', 'ins'
    ]
    allowed_attributes = {
        'a': ['href', 'title'],
    }

    # Clean HTML with bleach to prevent XSS
    return bleach.clean(html_content,
                        tags=allowed_tags,
                        attributes=allowed_attributes,
                        protocols=['http', 'https', 'mailto'])

# Security event logging
def log_security_event(event_type, message, recruiter_id=None, ip_address=None):
    """Log security-related events for monitoring"""
    if not ip_address:
        ip_address = get_real_ip() if request else 'unknown'

    security_message = f"SECURITY EVENT - {event_type}: {message} | Recruiter ID: {recruiter_id} | IP: {ip_address}"
    app.logger.warning(security_message)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

profanity.load_censor_words()


def get_pocketbase_url():
    url = os.getenv('POCKETBASE_URL', 'http://127.0.0.1:8090')
    return url.rstrip('/')

def get_real_ip():
    """Get the real client IP address, accounting for proxies and load balancers"""
    if request.headers.get('CF-Connecting-IP'):
        return request.headers.get('CF-Connecting-IP')
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    elif request.headers.get('X-Forwarded-For'):
        # X-Forwarded-For can contain multiple IPs, the first one is the original client
        forwarded_ips = request.headers.get('X-Forwarded-For').split(',')
        return forwarded_ips[0].strip()
    else:
        return request.remote_addr

app = Flask(__name__)

def api_route(rule, **options):
    """Decorator for API routes"""
    def decorator(f):
        return app.route(rule, **options)(f)
    return decorator

secret_key = os.getenv('SECRET_KEY')
if not secret_key:
    # Development fallback, production deployments must set SECRET_KEY
    secret_key = hashlib.sha256(f"nodex-dashboard-{get_pocketbase_url()}".encode()).hexdigest()
app.config['SECRET_KEY'] = secret_key
app.config['RATELIMIT_ENABLED'] = os.getenv('RATELIMIT_ENABLED', 'true').lower() in ('true', '1', 'yes', 'on')
app.config['TURNSTILE_SECRET_KEY'] = os.getenv('TURNSTILE_SECRET_KEY')
app.config['BLOCKED_IP_REDIRECT_URL'] = os.getenv('BLOCKED_IP_REDIRECT_URL', '/')
app.config['TEAM_DELETE_BATCH_SIZE'] = int(os.getenv('TEAM_DELETE_BATCH_SIZE', 25))

IS_PRODUCTION = os.getenv('FLASK_ENV') == 'production'

TURNSTILE_VERIFY_URL = 'https://challenges.cloudflare.com/turnstile/v0/siteverify'

# Cookies
RECRUITER_COOKIE = 'auth-key'
RECRUITER_COOKIE_MAX_AGE = 60 * 60 * 24 * 7
MEMBER_COOKIE = 'member-session'
MEMBER_SESSION_MAX_AGE = 60 * 60 * 24

# Record store collections
MEMBERS_COLLECTION = 'club_members'
LEGACY_MEMBERS_COLLECTION = 'nodex_team'
TEAMS_COLLECTION = 'teams'
TEAM_TASKS_COLLECTION = 'team_tasks'
APPLICATIONS_COLLECTION = 'nodex_apps'
MARKED_APPLICATIONS_COLLECTION = 'marked_apps'
RECRUITERS_COLLECTION = 'recruiters'
MEMBER_KEYS_COLLECTION = 'member_keys'
BLOCKED_IPS_COLLECTION = 'blocked_ips'
WEB_METADATA_COLLECTION = 'web_metadata'
ACTIVITY_LOG_COLLECTION = 'activity_log'
EXEC_ACTIVITY_COLLECTION = 'exec_activity'
MEMBER_ACTIVITY_COLLECTION = 'member_activity_log'

# Single-page fetch cap used by the dashboards, larger sets are truncated
LIST_ALL_CAP = 1000

LEGACY_ID_PREFIX = 'nodex_'
LEGACY_ID_PREFIXES = (LEGACY_ID_PREFIX, 'legacy_')
LEGACY_CATEGORY_TO_MEMBER_TYPE = {'direc': 'bos'}

APPLICATION_STATUSES = ('approved', 'rejected')

limiter = Limiter(
    key_func=get_real_ip,
    app=app,
    default_limits=["500 per hour", "100 per minute"],
    storage_uri="memory://",
    strategy="fixed-window",
    headers_enabled=True
)

member_session_serializer = URLSafeTimedSerializer(app.config['SECRET_KEY'], salt='member-session')


@app.after_request
def add_security_headers(response):
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    if request.is_secure:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    if not response.headers.get('Content-Security-Policy'):
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    response.headers['Permissions-Policy'] = 'camera=(), microphone=(), geolocation=()'
    return response


class NodeXError(Exception):
    """Base error, turned into a JSON response by the outermost handler"""
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, status_code=None, payload=None):
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

class AuthRequired(NodeXError):
    status_code = 401
    default_message = 'Authentication required'

class AuthInvalid(NodeXError):
    status_code = 401
    default_message = 'Invalid authentication'

class Forbidden(NodeXError):
    status_code = 403
    default_message = 'Insufficient permissions'

class ValidationFailed(NodeXError):
    status_code = 400
    default_message = 'Validation failed'

    def __init__(self, message=None, errors=None):
        super().__init__(message, payload={'errors': errors} if errors else None)
        self.errors = errors or []

class NotFound(NodeXError):
    status_code = 404
    default_message = 'Not found'

class Conflict(NodeXError):
    status_code = 409
    default_message = 'Conflict'

class UpstreamFailure(NodeXError):
    status_code = 500
    default_message = 'Record store request failed'

    def __init__(self, message=None, upstream_status=None):
        super().__init__(message)
        self.upstream_status = upstream_status


@app.errorhandler(NodeXError)
def handle_nodex_error(error):
    if error.status_code >= 500:
        app.logger.error(f"{error.__class__.__name__} on {request.method} {request.path}: {error.message}")
        body = {'error': error.message}
    else:
        body = {'message': error.message}
    body.update(error.payload)
    return jsonify(body), error.status_code

@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return jsonify({'message': error.description}), error.code
    app.logger.exception(f"Unhandled error on {request.method} {request.path}: {str(error)}")
    return jsonify({'error': 'Internal server error'}), 500


# PocketBase filter helpers
def pb_quote(value):
    """Render a value as a PocketBase filter literal"""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'

def filter_eq(field, value):
    return f'{field}={pb_quote(value)}'

def filter_neq(field, value):
    return f'{field}!={pb_quote(value)}'

def filter_like(field, value):
    return f'{field}~{pb_quote(value)}'

def filter_all(*clauses):
    clauses = [clause for clause in clauses if clause]
    if not clauses:
        return None
    return '(' + ' && '.join(clauses) + ')'

def filter_any(*clauses):
    clauses = [clause for clause in clauses if clause]
    if not clauses:
        return None
    return '(' + ' || '.join(clauses) + ')'


class PocketBaseService:
    """Client for the PocketBase records API"""

    def __init__(self, base_url=None, admin_token=None, timeout=None):
        self.base_url = (base_url or get_pocketbase_url()).rstrip('/')
        self.admin_token = admin_token if admin_token is not None else os.getenv('POCKETBASE_ADMIN_TOKEN')
        self.timeout = timeout or float(os.getenv('POCKETBASE_TIMEOUT', 30))
        self.headers = {
            'Content-Type': 'application/json'
        }
        if self.admin_token:
            self.headers['Authorization'] = self.admin_token

    def _records_url(self, collection, record_id=None):
        url = f"{self.base_url}/api/collections/{urllib.parse.quote(collection, safe='')}/records"
        if record_id:
            url = f"{url}/{urllib.parse.quote(str(record_id), safe='')}"
        return url

    def _validate_pocketbase_url(self, url):
        """Validate that URL targets the configured PocketBase instance to prevent SSRF"""
        try:
            parsed = urllib.parse.urlparse(url)
            base = urllib.parse.urlparse(self.base_url)
        except ValueError:
            return False
        return (parsed.scheme in ['http', 'https'] and
                parsed.netloc == base.netloc and
                parsed.path.startswith(f"{base.path}/api/collections/"))

    def _safe_request(self, method, url, **kwargs):
        """Make a safe HTTP request with URL validation and timeout"""
        if not self._validate_pocketbase_url(url):
            raise ValueError(f"Invalid PocketBase URL: {url}")

        kwargs.setdefault('timeout', self.timeout)
        kwargs.setdefault('headers', self.headers)

        try:
            if method.upper() == 'GET':
                return requests.get(url, **kwargs)
            elif method.upper() == 'POST':
                return requests.post(url, **kwargs)
            elif method.upper() == 'PATCH':
                return requests.patch(url, **kwargs)
            elif method.upper() == 'DELETE':
                return requests.delete(url, **kwargs)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except requests.RequestException as e:
            app.logger.error(f"PocketBase {method.upper()} {url} failed: {str(e)}")
            raise UpstreamFailure(f"Record store unavailable: {str(e)}")

    @staticmethod
    def _error_message(response):
        try:
            data = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(data, dict):
            return data.get('message', '')
        return ''

    def _handle_response(self, response, action, collection, missing_message=None):
        if 200 <= response.status_code < 300:
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                raise UpstreamFailure(f"Invalid JSON from record store on {action} {collection}",
                                      upstream_status=response.status_code)

        message = self._error_message(response)
        if response.status_code == 404:
            app.logger.info(f"PocketBase 404 on {action} {collection}: {message}")
            raise NotFound(missing_message or f"Record not found in {collection}")

        app.logger.error(f"PocketBase API error {response.status_code} on {action} {collection}: {message}")
        raise UpstreamFailure(message or f"Failed to {action} {collection}", upstream_status=response.status_code)

    def list_records(self, collection, filter=None, sort=None, expand=None, page=1, per_page=30):
        params = {'page': page, 'perPage': per_page}
        if filter:
            params['filter'] = filter
        if sort:
            params['sort'] = sort
        if expand:
            params['expand'] = expand

        response = self._safe_request('GET', self._records_url(collection), params=params)
        data = self._handle_response(response, 'list', collection) or {}
        data.setdefault('items', [])
        return data

    def list_items(self, collection, filter=None, sort=None, expand=None, page=1, per_page=30):
        return self.list_records(collection, filter=filter, sort=sort, expand=expand,
                                 page=page, per_page=per_page)['items']

    def list_all(self, collection, filter=None, sort=None, expand=None):
        """Fetch up to LIST_ALL_CAP records in one page"""
        return self.list_items(collection, filter=filter, sort=sort, expand=expand, per_page=LIST_ALL_CAP)

    def get_full_list(self, collection, filter=None, sort=None, batch=500):
        """Walk every page of a collection"""
        records = []
        page = 1
        while True:
            data = self.list_records(collection, filter=filter, sort=sort, page=page, per_page=batch)
            records.extend(data['items'])
            if page >= data.get('totalPages', 1) or not data['items']:
                break
            page += 1
        return records

    def get_first(self, collection, filter=None, sort=None):
        items = self.list_items(collection, filter=filter, sort=sort, per_page=1)
        return items[0] if items else None

    def get_record(self, collection, record_id, expand=None, missing_message=None):
        params = {'expand': expand} if expand else None
        response = self._safe_request('GET', self._records_url(collection, record_id), params=params)
        return self._handle_response(response, 'get', collection, missing_message)

    def create_record(self, collection, data):
        response = self._safe_request('POST', self._records_url(collection), json=data)
        return self._handle_response(response, 'create', collection)

    def update_record(self, collection, record_id, data, missing_message=None):
        response = self._safe_request('PATCH', self._records_url(collection, record_id), json=data)
        return self._handle_response(response, 'update', collection, missing_message)

    def delete_record(self, collection, record_id, missing_message=None):
        response = self._safe_request('DELETE', self._records_url(collection, record_id))
        self._handle_response(response, 'delete', collection, missing_message)
        return True

pocketbase_service = PocketBaseService()


# Input validation and sanitization functions
def sanitize_string(value, max_length=None):
    """Strip markup from free-text input and escape what is left"""
    if value is None:
        return value

    value = str(value).strip()
    if max_length and len(value) > max_length:
        value = value[:max_length]

    decoded = html.unescape(value)

    # Remove whole dangerous tags and their content
    decoded = re.sub(r'(?is)<(script|style|iframe|object|embed)[^>]*>.*?</\1>', '', decoded)
    decoded = bleach.clean(decoded, tags=[], attributes={}, strip=True)
    decoded = re.sub(r'(?i)(javascript:|vbscript:|data:)', '', decoded)

    safe = html.unescape(decoded)
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', safe)

def sanitize_url(value, max_length=None):
    """Sanitize URLs to prevent JavaScript injection, returns '' for unsafe input"""
    if not value:
        return ''

    value = str(value).strip()
    if max_length and len(value) > max_length:
        value = value[:max_length]

    try:
        parsed = urllib.parse.urlparse(value)
    except ValueError:
        return ''
    if parsed.scheme and parsed.scheme.lower() not in ['http', 'https', 'mailto']:
        return ''
    if 'javascript:' in value.lower() or 'data:' in value.lower() or 'vbscript:' in value.lower():
        return ''
    return value

def validate_email(email):
    """Validate email format"""
    if not email:
        return False, "Email is required"

    email = str(email).strip().lower()
    if len(email) > 120:
        return False, "Email is too long"

    email_regex = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    if not re.match(email_regex, email):
        return False, "Invalid email address"

    return True, email

def contains_profanity(text):
    """Returns True if clear profanity is detected"""
    if not text or not isinstance(text, str):
        return False

    normalized_text = text.lower().strip()
    if profanity.contains_profanity(normalized_text):
        return True

    # Spaced out words, at least 3 spaces to avoid false positives
    for spaced_word in re.findall(r'\b\w(?:\s+\w){3,}\b', normalized_text):
        if profanity.contains_profanity(re.sub(r'\s+', '', spaced_word)):
            return True

    return False

def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return data

def parse_int_arg(name, default, minimum=1, maximum=None):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationFailed(f"{name} must be an integer")
    value = max(value, minimum)
    if maximum is not None:
        value = min(value, maximum)
    return value

def split_skills(skills):
    """Accept skills as a list or a comma separated string"""
    if not skills:
        return []
    if isinstance(skills, (list, tuple)):
        return [str(skill).strip() for skill in skills if str(skill).strip()]
    return [skill.strip() for skill in str(skills).split(',') if skill.strip()]

def parse_pb_datetime(value):
    """Parse PocketBase timestamps such as '2024-05-01 10:20:30.123Z'"""
    if not value:
        return None
    text = str(value).strip().replace(' ', 'T', 1)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

def created_sort_key(record):
    return parse_pb_datetime(record.get('created')) or EPOCH

def utc_now_iso():
    return datetime.now(timezone.utc).isoformat()

def chunked(items, size):
    size = max(int(size), 1)
    for start in range(0, len(items), size):
        yield items[start:start + size]


# Member identity
class MemberRef(namedtuple('MemberRef', ['source', 'record_id'])):
    """Reference to a person in the canonical or the legacy member collection.

    Parsed once from the public id at the HTTP boundary. Legacy people are
    exposed as ``nodex_<id>``; PocketBase ids are lowercase alphanumerics, so a
    prefixed id never collides with a club_members id.
    """
    __slots__ = ()

    @classmethod
    def parse(cls, raw_id):
        raw_id = str(raw_id or '').strip()
        if not raw_id:
            raise ValidationFailed('Member ID is required')
        for prefix in LEGACY_ID_PREFIXES:
            if raw_id.startswith(prefix):
                record_id = raw_id[len(prefix):]
                if not record_id:
                    raise ValidationFailed('Invalid member ID')
                return cls.legacy(record_id)
        return cls.canonical(raw_id)

    @classmethod
    def canonical(cls, record_id):
        return cls(MEMBERS_COLLECTION, record_id)

    @classmethod
    def legacy(cls, record_id):
        return cls(LEGACY_MEMBERS_COLLECTION, record_id)

    @property
    def is_legacy(self):
        return self.source == LEGACY_MEMBERS_COLLECTION

    @property
    def public_id(self):
        if self.is_legacy:
            return f"{LEGACY_ID_PREFIX}{self.record_id}"
        return self.record_id

ResolvedMember = namedtuple('ResolvedMember', ['collection', 'record_id', 'record'])

def legacy_member_type(category):
    return LEGACY_CATEGORY_TO_MEMBER_TYPE.get(category, category)

def legacy_member_seed(legacy):
    """Fields for a club member materialised from a nodex_team record"""
    return {
        'name': legacy.get('name', ''),
        'email': legacy.get('email') or '',
        'phone': legacy.get('phone') or '',
        'member_type': legacy_member_type(legacy.get('category')),
        'position': legacy.get('title') or '',
        'bio': legacy.get('description') or '',
        'linkedin_url': legacy.get('linkedin') or '',
        'github_url': legacy.get('github') or '',
        'photo': legacy.get('photo') or '',
        'qualification': legacy.get('qualification') or '',
        'skills': split_skills(legacy.get('skills')),
        'status': 'active',
        'teams': [],
        'student_id': '',
        'department': '',
        'year': None,
        'portfolio_url': '',
    }

def legacy_member_view(legacy):
    """Present a nodex_team record in club member shape, read-only"""
    view = legacy_member_seed(legacy)
    view.update({
        'id': MemberRef.legacy(legacy['id']).public_id,
        'created': legacy.get('created'),
        'updated': legacy.get('updated'),
        'source': LEGACY_MEMBERS_COLLECTION,
        'readonly': True,
    })
    return view


class MembershipService:
    """Team membership, recorded as team ids on club_members.teams.

    People may still only exist in nodex_team; those are resolved through
    their (name, email) twin in club_members.
    """

    def __init__(self, store):
        self.store = store

    def resolve(self, ref):
        missing = 'NodeX team member not found' if ref.is_legacy else 'Club member not found'
        record = self.store.get_record(ref.source, ref.record_id, missing_message=missing)
        return ResolvedMember(ref.source, ref.record_id, record)

    def find_canonical_for_legacy(self, legacy):
        return self.store.get_first(MEMBERS_COLLECTION, filter=filter_all(
            filter_eq('name', legacy.get('name') or ''),
            filter_eq('email', legacy.get('email') or ''),
        ))

    def migrate_legacy_member(self, legacy_id):
        """Return the club member for a nodex_team record, creating it once.

        Returns (member, created).
        """
        legacy = self.resolve(MemberRef.legacy(legacy_id)).record
        existing = self.find_canonical_for_legacy(legacy)
        if existing:
            return existing, False

        member = self.store.create_record(MEMBERS_COLLECTION, legacy_member_seed(legacy))
        app.logger.info(f"Migrated nodex_team member {legacy_id} to club member {member.get('id')}")
        return member, True

    def canonical_member(self, ref, migrate=False):
        if not ref.is_legacy:
            return self.resolve(ref).record

        if migrate:
            member, _ = self.migrate_legacy_member(ref.record_id)
            return member

        legacy = self.resolve(ref).record
        member = self.find_canonical_for_legacy(legacy)
        if not member:
            raise NotFound('Club member record not found for this NodeX team member')
        return member

    def add_member(self, team_id, ref):
        self.store.get_record(TEAMS_COLLECTION, team_id, missing_message='Team not found')
        member = self.canonical_member(ref, migrate=True)

        current_teams = list(member.get('teams') or [])
        if team_id in current_teams:
            raise Conflict('Member is already part of this team')

        updated = self.store.update_record(MEMBERS_COLLECTION, member['id'], {'teams': current_teams + [team_id]})
        app.logger.info(f"Added member {member['id']} ({ref.public_id}) to team {team_id}")
        return updated

    def remove_member(self, team_id, ref):
        member = self.canonical_member(ref)

        current_teams = list(member.get('teams') or [])
        if team_id not in current_teams:
            raise NotFound('Member is not part of this team')

        remaining = [existing for existing in current_teams if existing != team_id]
        updated = self.store.update_record(MEMBERS_COLLECTION, member['id'], {'teams': remaining})
        app.logger.info(f"Removed member {member['id']} ({ref.public_id}) from team {team_id}")
        return updated

    def team_members(self, team_id, sort='name'):
        members = self.store.list_all(MEMBERS_COLLECTION, filter=filter_like('teams', team_id), sort=sort)
        # `~` is a substring match, keep exact team ids only
        return [dict(member, source=MEMBERS_COLLECTION) for member in members
                if team_id in (member.get('teams') or [])]


TeamDeletionReport = namedtuple('TeamDeletionReport', ['team_id', 'detached', 'failed', 'deleted'])

TEAM_STATUSES = ('active', 'inactive', 'archived', 'completed')

def validate_team_payload(data, require_description=True):
    errors = []
    name = sanitize_string(data.get('name'), max_length=120) or ''
    description = sanitize_string(data.get('description'), max_length=5000) or ''
    category = sanitize_string(data.get('category'), max_length=60) or ''

    if not name:
        errors.append({'field': 'name', 'message': 'Name is required'})
    if require_description and not description:
        errors.append({'field': 'description', 'message': 'Description is required'})
    if not category:
        errors.append({'field': 'category', 'message': 'Category is required'})

    status = data.get('status') or 'active'
    if status not in TEAM_STATUSES:
        errors.append({'field': 'status', 'message': f"Status must be one of: {', '.join(TEAM_STATUSES)}"})

    max_members = data.get('max_members')
    if max_members in ('', None):
        max_members = None
    else:
        try:
            max_members = int(max_members)
            if max_members < 1:
                raise ValueError
        except (TypeError, ValueError):
            errors.append({'field': 'max_members', 'message': 'max_members must be a positive integer'})

    if errors:
        missing = [error['field'] for error in errors if error['message'].endswith('is required')]
        message = f"Missing required fields: {', '.join(missing)}" if missing else 'Validation failed'
        raise ValidationFailed(message, errors)

    return {
        'name': name,
        'description': description,
        'category': category,
        'team_lead': data.get('team_lead') or '',
        'repository_url': sanitize_url(data.get('repository_url'), max_length=500),
        'jira_url': sanitize_url(data.get('jira_url'), max_length=500),
        'status': status,
        'image_url': sanitize_url(data.get('image_url'), max_length=500),
        'skills_required': split_skills(data.get('skills_required')),
        'max_members': max_members,
    }


class TeamService:
    """Team records and their lifecycle"""

    def __init__(self, store, batch_size=None):
        self.store = store
        self.batch_size = batch_size or app.config['TEAM_DELETE_BATCH_SIZE']

    def _optional_list(self, collection, **kwargs):
        try:
            return self.store.list_all(collection, **kwargs)
        except NotFound:
            app.logger.warning(f"Collection {collection} is not available")
            return []

    def _counts(self):
        member_counts = Counter()
        for member in self.store.list_all(MEMBERS_COLLECTION):
            for team_id in member.get('teams') or []:
                member_counts[team_id] += 1

        task_counts = Counter()
        completed_counts = Counter()
        for task in self._optional_list(TEAM_TASKS_COLLECTION):
            task_counts[task.get('team')] += 1
            if task.get('status') == 'completed':
                completed_counts[task.get('team')] += 1
        return member_counts, task_counts, completed_counts

    def _with_counts(self, teams):
        member_counts, task_counts, completed_counts = self._counts()
        return [dict(team,
                     memberCount=member_counts[team['id']],
                     taskCount=task_counts[team['id']],
                     completedTaskCount=completed_counts[team['id']])
                for team in teams]

    def list_teams(self):
        teams = self.store.list_all(TEAMS_COLLECTION, sort='-created', expand='team_lead')
        return self._with_counts(teams)

    def get_team(self, team_id):
        return self.store.get_record(TEAMS_COLLECTION, team_id, missing_message='Team not found')

    def create_team(self, data, recruiter_id):
        team_data = validate_team_payload(data)
        team_data['created_by'] = recruiter_id
        team = self.store.create_record(TEAMS_COLLECTION, team_data)
        app.logger.info(f"Team created: {team.get('id')} ({team_data['name']}) by recruiter {recruiter_id}")
        return team

    def update_team(self, team_id, data):
        team_data = validate_team_payload(data, require_description=False)
        team = self.store.update_record(TEAMS_COLLECTION, team_id, team_data, missing_message='Team not found')
        app.logger.info(f"Team updated: {team_id}")
        return team

    def teams_for_member(self, member):
        teams = []
        for team_id in member.get('teams') or []:
            try:
                teams.append(self.store.get_record(TEAMS_COLLECTION, team_id))
            except NotFound:
                app.logger.warning(f"Member {member.get('id')} references missing team {team_id}")
        return self._with_counts(teams) if teams else []

    def delete_team(self, team_id):
        """Detach the team from every member, then delete it.

        Members are rewritten in batches; failures are collected rather than
        aborting. The team record is only deleted once no member references
        it, so a partial run can be retried by deleting again.
        """
        self.get_team(team_id)

        attached = [member for member in self.store.get_full_list(MEMBERS_COLLECTION, filter=filter_like('teams', team_id))
                    if team_id in (member.get('teams') or [])]

        detached = []
        failed = []
        for batch_number, batch in enumerate(chunked(attached, self.batch_size), start=1):
            for member in batch:
                remaining = [existing for existing in member.get('teams') or [] if existing != team_id]
                try:
                    self.store.update_record(MEMBERS_COLLECTION, member['id'], {'teams': remaining})
                    detached.append(member['id'])
                except NodeXError as e:
                    app.logger.error(f"Failed to detach team {team_id} from member {member['id']}: {e.message}")
                    failed.append(member['id'])
            app.logger.info(f"Team {team_id} deletion: batch {batch_number} processed ({len(batch)} members)")

        if failed:
            app.logger.warning(f"Team {team_id} kept, {len(failed)} member(s) still reference it: {failed}")
            return TeamDeletionReport(team_id, detached, failed, False)

        self.store.delete_record(TEAMS_COLLECTION, team_id, missing_message='Team not found')
        app.logger.info(f"Team deleted: {team_id} (detached from {len(detached)} members)")
        return TeamDeletionReport(team_id, detached, [], True)


# Analytics
def build_member_analytics(members, legacy_members, teams, now=None):
    """Fold club members and nodex_team members into dashboard counts"""
    now = now or datetime.now(timezone.utc)
    people = list(members) + [legacy_member_view(legacy) for legacy in legacy_members]

    total_members = len(people)
    active_members = sum(1 for person in people if person.get('status') == 'active')

    members_by_type = Counter(person.get('member_type') for person in people if person.get('member_type'))
    members_by_department = Counter(person['department'] for person in people if person.get('department'))
    members_by_year = Counter(str(person['year']) for person in people if person.get('year'))

    thirty_days_ago = now - timedelta(days=30)
    recent = [person for person in people if created_sort_key(person) > thirty_days_ago]
    recent.sort(key=created_sort_key, reverse=True)

    members_without_teams = sum(1 for person in people if not person.get('teams'))

    team_membership_stats = []
    for team in teams:
        team_people = [person for person in people if team['id'] in (person.get('teams') or [])]
        team_membership_stats.append({
            'teamId': team['id'],
            'teamName': team.get('name'),
            'memberCount': len(team_people),
            'activeMembers': sum(1 for person in team_people if person.get('status') == 'active'),
        })
    teams_without_members = sum(1 for stat in team_membership_stats if stat['memberCount'] == 0)

    skills_count = Counter()
    for person in people:
        skills = person.get('skills')
        if isinstance(skills, list):
            skills_count.update(skills)

    return {
        'overview': {
            'totalMembers': total_members,
            'activeMembers': active_members,
            'inactiveMembers': total_members - active_members,
            'recentMembers': len(recent),
            'membersWithoutTeams': members_without_teams,
            'teamsWithoutMembers': teams_without_members,
        },
        'membersByType': dict(members_by_type),
        'membersByDepartment': dict(members_by_department),
        'membersByYear': dict(members_by_year),
        'teamMembershipStats': team_membership_stats,
        'topSkills': [{'skill': skill, 'count': count} for skill, count in skills_count.most_common(10)],
        'recentMembersList': [{
            'id': person.get('id'),
            'name': person.get('name'),
            'member_type': person.get('member_type'),
            'created': person.get('created'),
        } for person in recent[:10]],
    }

def fetch_member_analytics(store, now=None):
    members = store.list_all(MEMBERS_COLLECTION, expand='teams')
    legacy_members = store.list_all(LEGACY_MEMBERS_COLLECTION)
    teams = store.list_all(TEAMS_COLLECTION)
    return build_member_analytics(members, legacy_members, teams, now=now)


# Club member directory
MEMBER_STATUSES = ('active', 'inactive', 'alumni')

def legacy_matches(view, search='', member_type='', team_id='', status=''):
    if search:
        needle = search.lower()
        if needle not in (view.get('name') or '').lower() and needle not in (view.get('email') or '').lower():
            return False
    if member_type and member_type != view.get('member_type'):
        return False
    # nodex_team members are always active
    if status and status != 'active':
        return False
    # and never carry team assignments
    if team_id:
        return False
    return True

def validate_member_payload(data):
    errors = []
    name = sanitize_string(data.get('name'), max_length=120) or ''
    if not name:
        errors.append({'field': 'name', 'message': 'Name is required'})

    email = data.get('email')
    if email:
        email_ok, email = validate_email(email)
        if not email_ok:
            errors.append({'field': 'email', 'message': email})
    else:
        errors.append({'field': 'email', 'message': 'Email is required'})

    member_type = sanitize_string(data.get('member_type'), max_length=40) or ''
    if not member_type:
        errors.append({'field': 'member_type', 'message': 'Member type is required'})

    status = data.get('status') or 'active'
    if status not in MEMBER_STATUSES:
        errors.append({'field': 'status', 'message': f"Status must be one of: {', '.join(MEMBER_STATUSES)}"})

    year = data.get('year')
    if year in ('', None):
        year = None
    else:
        try:
            year = int(year)
        except (TypeError, ValueError):
            errors.append({'field': 'year', 'message': 'Year must be a number'})

    teams = data.get('teams')
    if teams is not None and not isinstance(teams, list):
        errors.append({'field': 'teams', 'message': 'Teams must be a list of team IDs'})
        teams = None

    if errors:
        required = ('name', 'email', 'member_type')
        if any(error['field'] in required and error['message'].endswith('is required') for error in errors):
            raise ValidationFailed('Missing required fields: name, email, member_type', errors)
        raise ValidationFailed('Validation failed', errors)

    cleaned = {
        'name': name,
        'email': email,
        'student_id': sanitize_string(data.get('student_id'), max_length=40) or '',
        'phone': sanitize_string(data.get('phone'), max_length=20) or '',
        'member_type': member_type,
        'position': sanitize_string(data.get('position'), max_length=120) or '',
        'department': sanitize_string(data.get('department'), max_length=120) or '',
        'year': year,
        'skills': split_skills(data.get('skills')),
        'bio': sanitize_string(data.get('bio'), max_length=2000) or '',
        'linkedin_url': sanitize_url(data.get('linkedin_url'), max_length=500),
        'github_url': sanitize_url(data.get('github_url'), max_length=500),
        'portfolio_url': sanitize_url(data.get('portfolio_url'), max_length=500),
        'status': status,
    }
    if teams is not None:
        cleaned['teams'] = list(dict.fromkeys(str(team_id) for team_id in teams))
    return cleaned


class MemberDirectory:
    """Club member listing merged with the nodex_team roster"""

    def __init__(self, store):
        self.store = store

    def search(self, page=1, limit=50, search='', member_type='', team_id='', status=''):
        clauses = []
        if search:
            clauses.append(filter_any(filter_like('name', search),
                                      filter_like('email', search),
                                      filter_like('student_id', search)))
        if member_type:
            clauses.append(filter_eq('member_type', member_type))
        if team_id:
            clauses.append(filter_like('teams', team_id))
        if status:
            clauses.append(filter_eq('status', status))

        page_data = self.store.list_records(MEMBERS_COLLECTION, filter=filter_all(*clauses), sort='-created',
                                            expand='teams', page=page, per_page=limit)
        members = [dict(member, source=MEMBERS_COLLECTION) for member in page_data['items']]
        total_items = page_data.get('totalItems', len(members))
        if team_id:
            # `~` is a substring match, keep exact team ids only
            exact = [member for member in members if team_id in (member.get('teams') or [])]
            total_items -= len(members) - len(exact)
            members = exact

        legacy = []
        if page == 1:
            legacy = [legacy_member_view(record)
                      for record in self.store.list_all(LEGACY_MEMBERS_COLLECTION, sort='pos')]
            legacy = [view for view in legacy if legacy_matches(view, search, member_type, team_id, status)]

        combined = members + legacy
        combined.sort(key=created_sort_key, reverse=True)

        total_items += len(legacy)
        return {
            'members': combined,
            'totalItems': total_items,
            'totalPages': max(math.ceil(total_items / limit), 1),
            'page': page,
            'teams': self.store.list_all(TEAMS_COLLECTION, sort='name'),
        }

    def get(self, ref):
        if ref.is_legacy:
            legacy = self.store.get_record(LEGACY_MEMBERS_COLLECTION, ref.record_id,
                                           missing_message='NodeX team member not found')
            return legacy_member_view(legacy)
        return self.store.get_record(MEMBERS_COLLECTION, ref.record_id, expand='teams',
                                     missing_message='Club member not found')

    def check_teams(self, team_ids, current_teams, can_manage_teams):
        """A changed teams list needs team management and may only name existing teams"""
        if set(team_ids) == set(current_teams):
            return
        if not can_manage_teams:
            raise Forbidden('Insufficient permissions for team management')

        known = {team['id'] for team in self.store.list_all(TEAMS_COLLECTION)}
        unknown = [team_id for team_id in team_ids if team_id not in known]
        if unknown:
            raise ValidationFailed(f"Unknown team IDs: {', '.join(unknown)}",
                                   [{'field': 'teams', 'message': f"Team not found: {team_id}"} for team_id in unknown])

    def create(self, data, can_manage_teams=False):
        member_data = validate_member_payload(data)
        member_data['teams'] = member_data.get('teams') or []
        self.check_teams(member_data['teams'], [], can_manage_teams)

        member = self.store.create_record(MEMBERS_COLLECTION, member_data)
        app.logger.info(f"Club member created: {member.get('id')}")
        return member

    def update(self, ref, data, can_manage_teams=False):
        if ref.is_legacy:
            raise ValidationFailed('NodeX team members are edited through /api/dashboard/team')
        member_data = validate_member_payload(data)

        # Without a teams field the stored membership is kept
        if 'teams' in member_data:
            current = self.store.get_record(MEMBERS_COLLECTION, ref.record_id, missing_message='Club member not found')
            self.check_teams(member_data['teams'], current.get('teams') or [], can_manage_teams)

        member = self.store.update_record(MEMBERS_COLLECTION, ref.record_id, member_data,
                                          missing_message='Club member not found')
        app.logger.info(f"Club member updated: {ref.record_id}")
        return member

    def delete(self, ref):
        if ref.is_legacy:
            raise ValidationFailed('NodeX team members are deleted through /api/dashboard/team')
        self.store.delete_record(MEMBERS_COLLECTION, ref.record_id, missing_message='Club member not found')
        app.logger.info(f"Club member deleted: {ref.record_id}")


LEGACY_CATEGORIES = ('direc', 'faculty', 'exec', 'lead', 'founding', 'core')

def validate_roster_payload(data):
    errors = []
    name = sanitize_string(data.get('name'), max_length=120) or ''
    title = sanitize_string(data.get('title'), max_length=120) or ''
    profile = sanitize_string(data.get('profile'), max_length=500) or ''
    category = data.get('category') or ''

    for field, value in (('name', name), ('title', title), ('profile', profile), ('category', category)):
        if not value:
            errors.append({'field': field, 'message': f"{field.capitalize()} is required"})
    if errors:
        raise ValidationFailed('Missing required fields', errors)

    if category not in LEGACY_CATEGORIES:
        raise ValidationFailed(f"Invalid category. Must be one of: {', '.join(LEGACY_CATEGORIES)}",
                               [{'field': 'category', 'message': 'Invalid category'}])

    email = data.get('email') or ''
    if email:
        email_ok, email = validate_email(email)
        if not email_ok:
            raise ValidationFailed('Validation failed', [{'field': 'email', 'message': email}])

    pos = data.get('pos')
    try:
        pos = int(pos) if pos not in ('', None) else 1
    except (TypeError, ValueError):
        raise ValidationFailed('Validation failed', [{'field': 'pos', 'message': 'Position must be a number'}])

    return {
        'name': name,
        'title': title,
        'qualification': profile,
        'photo': sanitize_url(data.get('photo'), max_length=500),
        'linkedin': sanitize_url(data.get('linkedin'), max_length=500),
        'github': sanitize_url(data.get('github'), max_length=500),
        'email': email,
        'phone': sanitize_string(data.get('phone'), max_length=20) or '',
        'skills': ', '.join(split_skills(data.get('skills'))),
        'pos': pos,
        'category': category,
    }


class LegacyRoster:
    """The nodex_team roster shown on the public site.

    Records keep their own shape; `profile` is the client-facing name of
    `qualification`. Renaming a person or changing their email detaches them
    from a migrated club member, which is matched on (name, email).
    """

    def __init__(self, store):
        self.store = store

    def list(self):
        members = self.store.list_all(LEGACY_MEMBERS_COLLECTION, sort='pos')
        return [dict(member, profile=member.get('qualification') or '') for member in members]

    def create(self, data):
        member = self.store.create_record(LEGACY_MEMBERS_COLLECTION, validate_roster_payload(data))
        app.logger.info(f"NodeX team member created: {member.get('id')}")
        return member

    def update(self, ref, data):
        member = self.store.update_record(LEGACY_MEMBERS_COLLECTION, ref.record_id, validate_roster_payload(data),
                                          missing_message='NodeX team member not found')
        app.logger.info(f"NodeX team member updated: {ref.record_id}")
        return member

    def delete(self, ref):
        self.store.delete_record(LEGACY_MEMBERS_COLLECTION, ref.record_id,
                                 missing_message='NodeX team member not found')
        app.logger.info(f"NodeX team member deleted: {ref.record_id}")


# Application marking
def audit_timestamp(now=None):
    return (now or datetime.now(timezone.utc)).strftime('%Y-%m-%d %H:%M:%S UTC')

def format_mark_remark(status, recruiter_name, remarks, timestamp):
    icon = '✅' if status == 'approved' else '❌'
    return (f"**{status.capitalize()} Action** {icon}\n"
            f"• Status: **{status.upper()}**\n"
            f"• Recruiter: {recruiter_name}\n"
            f"• Date: {timestamp}\n"
            f"• Remarks: *{remarks or 'No remarks'}*\n"
            f"\n---")

def format_rollback_remark(previous_status, recruiter_name, reason, timestamp):
    return (f"**Rollback Action**\n"
            f"• Status: Rolled back from **{previous_status}**\n"
            f"• Recruiter: {recruiter_name}\n"
            f"• Date: {timestamp}\n"
            f"• Reason: {reason}\n"
            f"• Action: Application moved back to pending status\n"
            f"\n---")

def append_remark(existing, new_remark):
    if existing:
        return f"{existing}\n\n{new_remark}"
    return new_remark


class ApplicationService:
    """Join applications and their approve/reject/rollback trail.

    An application is pending exactly when no marked_apps row references it.
    """

    def __init__(self, store):
        self.store = store

    def find_mark(self, application_id):
        return self.store.get_first(MARKED_APPLICATIONS_COLLECTION, filter=filter_eq('application', application_id))

    def pending_applications(self):
        applications = self.store.list_all(APPLICATIONS_COLLECTION, sort='-created')
        marked_ids = {mark.get('application') for mark in self.store.list_all(MARKED_APPLICATIONS_COLLECTION)}
        return [application for application in applications if application['id'] not in marked_ids]

    def list_applications(self, kind='pending'):
        if kind == 'pending':
            applications = self.pending_applications()
        elif kind in APPLICATION_STATUSES:
            marks = self.store.list_all(MARKED_APPLICATIONS_COLLECTION, filter=filter_eq('status', kind),
                                        sort='-created', expand='application')
            applications = []
            for mark in marks:
                application = dict((mark.get('expand') or {}).get('application') or {'id': mark.get('application')})
                application['markedData'] = {
                    'status': mark.get('status'),
                    'remarks': mark.get('remarks'),
                    'created': mark.get('created'),
                }
                applications.append(application)
        else:
            raise ValidationFailed(f"Type must be one of: pending, {', '.join(APPLICATION_STATUSES)}")

        for application in applications:
            application['modRemarksHtml'] = markdown_to_html(application.get('modRemarks'))
        return applications

    def mark(self, application_id, status, remarks, recruiter):
        if status not in APPLICATION_STATUSES:
            raise ValidationFailed("Status must be either 'approved' or 'rejected'")

        application = self.store.get_record(APPLICATIONS_COLLECTION, application_id,
                                            missing_message='Application not found')
        if self.find_mark(application_id):
            raise Conflict('Application has already been marked')

        remark = format_mark_remark(status, recruiter.get('assignee') or recruiter['id'], remarks, audit_timestamp())
        mod_remarks = append_remark(application.get('modRemarks') or '', remark)

        self.store.update_record(APPLICATIONS_COLLECTION, application_id, {
            'marked': True,
            'modRemarks': mod_remarks,
        })
        marked = self.store.create_record(MARKED_APPLICATIONS_COLLECTION, {
            'application': application_id,
            'status': status,
            'remarks': remarks or '',
            'recruiter': recruiter['id'],
        })
        app.logger.info(f"Application {application_id} {status} by recruiter {recruiter['id']}")
        return marked

    def rollback(self, application_id, reason, recruiter):
        if not reason:
            raise ValidationFailed('Reason is required')

        mark = self.find_mark(application_id)
        if not mark:
            raise NotFound('Application is not marked')
        previous_status = mark.get('status')

        self.store.delete_record(MARKED_APPLICATIONS_COLLECTION, mark['id'])

        application = self.store.get_record(APPLICATIONS_COLLECTION, application_id,
                                            missing_message='Application not found')
        remark = format_rollback_remark(previous_status, recruiter.get('assignee') or recruiter['id'],
                                        reason, audit_timestamp())
        mod_remarks = append_remark(application.get('modRemarks') or '', remark)

        self.store.update_record(APPLICATIONS_COLLECTION, application_id, {
            'marked': False,
            'modRemarks': mod_remarks,
        })
        app.logger.info(f"Application {application_id} rolled back from {previous_status} by recruiter {recruiter['id']}")
        return previous_status, mod_remarks


# Activity trails, best effort
def create_exec_activity(recruiter, action, resource_type, resource_id=None, details=None):
    return pocketbase_service.create_record(EXEC_ACTIVITY_COLLECTION, {
        'action': action,
        'resource_type': resource_type,
        'resource_id': resource_id or '',
        'details': details or '',
        'performed_by': recruiter.get('assignee'),
        'performer_id': recruiter['id'],
        'ip_address': get_real_ip() or '',
        'user_agent': request.headers.get('User-Agent', ''),
    })

def log_exec_activity(recruiter, action, resource_type, resource_id, details):
    try:
        create_exec_activity(recruiter, action, resource_type, resource_id, details)
    except NodeXError as e:
        app.logger.error(f"Failed to log exec activity '{action}': {e.message}")

def log_member_activity(member_id, action, resource_type, resource_id, details):
    try:
        pocketbase_service.create_record(MEMBER_ACTIVITY_COLLECTION, {
            'member_id': member_id,
            'action': action,
            'resource_type': resource_type,
            'resource_id': resource_id,
            'details': details,
            'ip_address': get_real_ip() or 'unknown',
            'user_agent': request.headers.get('User-Agent', 'unknown'),
            'timestamp': utc_now_iso(),
        })
    except NodeXError as e:
        app.logger.error(f"Failed to log member activity '{action}': {e.message}")


# Site settings
def get_web_metadata():
    try:
        return pocketbase_service.get_first(WEB_METADATA_COLLECTION, sort='-created')
    except NodeXError as e:
        app.logger.error(f"Error fetching web metadata: {e.message}")
        return None

def is_maintenance_mode():
    metadata = get_web_metadata()
    return bool(metadata and metadata.get('maintenance'))

def is_accepting_applications():
    metadata = get_web_metadata()
    if not metadata:
        return True
    return metadata.get('accepting', True) is not False

def is_ip_blocked(ip_address):
    if not ip_address:
        return False
    return pocketbase_service.get_first(BLOCKED_IPS_COLLECTION, filter=filter_eq('ip', ip_address)) is not None

def verify_turnstile_token(token, remote_ip=None):
    secret = app.config.get('TURNSTILE_SECRET_KEY')
    if not secret:
        return True
    if not token:
        return False
    try:
        response = requests.post(TURNSTILE_VERIFY_URL, data={
            'secret': secret,
            'response': token,
            'remoteip': remote_ip or '',
        }, timeout=10)
        return bool(response.json().get('success'))
    except (requests.RequestException, ValueError) as e:
        app.logger.error(f"Captcha verification failed: {str(e)}")
        return False


# Recruiter sessions
class RecruiterContext:
    """The recruiter behind the auth-key cookie, resolved once per request"""

    def __init__(self, recruiter):
        self.recruiter = recruiter

    @property
    def id(self):
        return self.recruiter['id']

    @property
    def assignee(self):
        return self.recruiter.get('assignee')

    @property
    def can_manage_teams(self):
        return bool(self.recruiter.get('team_mgmt'))

    def to_dict(self):
        return {'id': self.id, 'assignee': self.assignee, 'team_mgmt': self.can_manage_teams}

def find_recruiter_by_key(auth_key):
    if not auth_key:
        return None
    return pocketbase_service.get_first(RECRUITERS_COLLECTION, filter=filter_eq('auth_key', auth_key))

def get_current_recruiter():
    if 'recruiter_context' in g:
        return g.recruiter_context

    recruiter = find_recruiter_by_key(request.cookies.get(RECRUITER_COOKIE))
    g.recruiter_context = RecruiterContext(recruiter) if recruiter else None
    return g.recruiter_context

def require_recruiter(team_mgmt=False):
    if not request.cookies.get(RECRUITER_COOKIE):
        raise AuthRequired()

    context = get_current_recruiter()
    if not context:
        log_security_event('invalid_auth_key', f"Invalid auth key used on {request.path}")
        raise AuthInvalid()

    if team_mgmt and not context.can_manage_teams:
        app.logger.warning(f"Recruiter {context.id} lacks team management on {request.path}")
        raise Forbidden('Insufficient permissions for team management')
    return context

def recruiter_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        require_recruiter()
        return f(*args, **kwargs)
    return decorated_function

def team_mgmt_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        require_recruiter(team_mgmt=True)
        return f(*args, **kwargs)
    return decorated_function

def set_recruiter_cookie(response, auth_key):
    response.set_cookie(RECRUITER_COOKIE, auth_key, max_age=RECRUITER_COOKIE_MAX_AGE,
                        httponly=True, secure=IS_PRODUCTION, samesite='Strict')

def clear_recruiter_cookie(response):
    response.delete_cookie(RECRUITER_COOKIE, httponly=True, secure=IS_PRODUCTION, samesite='Strict')


# Member sessions
def build_member_session(member, key_type, login_time=None):
    return {
        'authenticated': True,
        'member': {
            'id': member['id'],
            'name': member.get('name'),
            'email': member.get('email'),
            'member_type': member.get('member_type'),
            'position': member.get('position'),
            'teams': member.get('teams') or [],
        },
        'keyType': key_type,
        'loginTime': (login_time or datetime.now(timezone.utc)).isoformat(),
    }

def encode_member_session(session_data):
    return member_session_serializer.dumps(session_data)

def read_member_session():
    """Returns (session_data, expired) for the member-session cookie"""
    raw = request.cookies.get(MEMBER_COOKIE)
    if not raw:
        return None, False

    try:
        session_data = member_session_serializer.loads(raw)
    except BadSignature:
        log_security_event('invalid_member_session', 'Tampered member-session cookie')
        return None, False

    if not isinstance(session_data, dict) or not session_data.get('authenticated') or not session_data.get('member'):
        return None, False

    try:
        login_time = datetime.fromisoformat(session_data.get('loginTime'))
    except (TypeError, ValueError):
        return None, False
    if login_time.tzinfo is None:
        login_time = login_time.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) - login_time > timedelta(seconds=MEMBER_SESSION_MAX_AGE):
        return None, True

    return session_data, False

def get_current_member():
    if 'member_session' not in g:
        g.member_session, _ = read_member_session()
    session_data = g.member_session
    return session_data['member'] if session_data else None

def member_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not get_current_member():
            return jsonify({'success': False, 'error': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated_function

def authenticate_member_key(key):
    """Look a key up in member_keys, then in recruiter keys. Returns (member, key_type)"""
    member_key = pocketbase_service.get_first(MEMBER_KEYS_COLLECTION, filter=filter_eq('key', key))
    if member_key and member_key.get('member_id'):
        try:
            return pocketbase_service.get_record(MEMBERS_COLLECTION, member_key['member_id']), 'member'
        except NotFound:
            app.logger.warning(f"member_keys entry {member_key.get('id')} points at a missing member")

    recruiter = find_recruiter_by_key(key)
    if recruiter and recruiter.get('assignee'):
        # Recruiters are club members too, linked through assignee
        try:
            return pocketbase_service.get_record(MEMBERS_COLLECTION, recruiter['assignee']), 'recruiter'
        except NotFound:
            app.logger.warning(f"Recruiter {recruiter.get('id')} has no club member record")

    return None, None

def set_member_cookie(response, session_data):
    response.set_cookie(MEMBER_COOKIE, encode_member_session(session_data), max_age=MEMBER_SESSION_MAX_AGE,
                        httponly=True, secure=IS_PRODUCTION, samesite='Lax')

def clear_member_cookie(response):
    response.delete_cookie(MEMBER_COOKIE, httponly=True, secure=IS_PRODUCTION, samesite='Lax')


# Maintenance mode middleware
MAINTENANCE_GUARDED_ENDPOINTS = {
    'join_application', 'public_team', 'log_site_activity',
    'member_auth', 'member_auth_check', 'member_logout',
    'member_profile', 'member_teams', 'member_team_detail',
}

@app.before_request
def check_maintenance_mode():
    """Answer public and member endpoints with 503 while maintenance mode is on"""
    if request.endpoint not in MAINTENANCE_GUARDED_ENDPOINTS:
        return
    if not is_maintenance_mode():
        return

    # Recruiters keep access during maintenance
    if request.cookies.get(RECRUITER_COOKIE):
        try:
            if get_current_recruiter():
                return
        except NodeXError as e:
            app.logger.error(f"Error checking recruiter during maintenance: {e.message}")

    return jsonify({'message': 'The site is under maintenance. Please check back soon.', 'maintenance': True}), 503


# Recruiter authentication routes
@api_route('/api/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    data = get_json_body()
    auth_key = str(data.get('authKey') or '').strip()
    if not auth_key:
        return jsonify({'message': 'Auth key is required', 'success': False}), 400

    recruiter = find_recruiter_by_key(auth_key)
    if not recruiter:
        log_security_event('failed_login', 'Invalid auth key on exec dashboard login')
        return jsonify({'message': 'Invalid auth key', 'success': False}), 401

    response = jsonify({
        'message': 'Login successful',
        'success': True,
        'recruiter': {'id': recruiter['id'], 'assignee': recruiter.get('assignee')},
    })
    set_recruiter_cookie(response, auth_key)
    app.logger.info(f"Recruiter login: {recruiter['id']} from IP: {get_real_ip()}")
    log_exec_activity(recruiter, 'Login', 'authentication', recruiter['id'],
                      f"Recruiter \"{recruiter.get('assignee')}\" logged in to executive dashboard")
    return response

@api_route('/api/auth-check', methods=['GET'])
def auth_check():
    if not request.cookies.get(RECRUITER_COOKIE):
        return jsonify({'message': 'No auth key found', 'authenticated': False}), 401

    context = get_current_recruiter()
    if not context:
        response = jsonify({'message': 'Invalid auth key', 'authenticated': False})
        clear_recruiter_cookie(response)
        return response, 401

    return jsonify({'message': 'Authenticated', 'authenticated': True, 'recruiter': context.to_dict()})

@api_route('/api/logout', methods=['POST'])
def logout():
    if request.cookies.get(RECRUITER_COOKIE):
        context = get_current_recruiter()
        if context:
            log_exec_activity(context.recruiter, 'Logout', 'authentication', context.id,
                              f"Recruiter \"{context.assignee}\" logged out of executive dashboard")

    response = jsonify({'message': 'Logged out successfully', 'success': True})
    clear_recruiter_cookie(response)
    return response


# Team management routes
@api_route('/api/dashboard/teams', methods=['GET'])
@team_mgmt_required
def list_teams():
    return jsonify({'teams': TeamService(pocketbase_service).list_teams()})

@api_route('/api/dashboard/teams', methods=['POST'])
@team_mgmt_required
def create_team():
    context = get_current_recruiter()
    team = TeamService(pocketbase_service).create_team(get_json_body(), context.id)
    log_exec_activity(context.recruiter, 'Create Team', 'team', team.get('id'), f"Created team {team.get('name')}")
    return jsonify({'message': 'Team created successfully', 'team': team}), 201

@api_route('/api/dashboard/teams/<team_id>', methods=['GET'])
@recruiter_required
def get_team(team_id):
    team = TeamService(pocketbase_service).get_team(team_id)
    members = MembershipService(pocketbase_service).team_members(team_id)
    return jsonify({'team': team, 'members': members})

@api_route('/api/dashboard/teams/<team_id>', methods=['PUT'])
@team_mgmt_required
def update_team(team_id):
    context = get_current_recruiter()
    team = TeamService(pocketbase_service).update_team(team_id, get_json_body())
    log_exec_activity(context.recruiter, 'Update Team', 'team', team_id, f"Updated team {team.get('name')}")
    return jsonify({'message': 'Team updated successfully', 'team': team})

@api_route('/api/dashboard/teams/<team_id>', methods=['DELETE'])
@team_mgmt_required
def delete_team(team_id):
    context = get_current_recruiter()
    report = TeamService(pocketbase_service).delete_team(team_id)

    if not report.deleted:
        return jsonify({
            'error': 'Failed to detach the team from some members, the team was kept. Retry the deletion.',
            'detachedMembers': report.detached,
            'failedMemberIds': report.failed,
        }), 500

    log_exec_activity(context.recruiter, 'Delete Team', 'team', team_id,
                      f"Deleted team {team_id}, detached from {len(report.detached)} members")
    return jsonify({'message': 'Team deleted successfully', 'detachedMembers': report.detached})

@api_route('/api/dashboard/teams/<team_id>/members', methods=['GET'])
@team_mgmt_required
def list_team_members(team_id):
    return jsonify({'members': MembershipService(pocketbase_service).team_members(team_id)})

@api_route('/api/dashboard/teams/<team_id>/members', methods=['POST'])
@team_mgmt_required
def add_team_member(team_id):
    context = get_current_recruiter()
    data = get_json_body()
    if not data.get('member_id'):
        raise ValidationFailed('Missing required field: member_id')

    ref = MemberRef.parse(data.get('member_id'))
    member = MembershipService(pocketbase_service).add_member(team_id, ref)
    log_exec_activity(context.recruiter, 'Add Team Member', 'team', team_id,
                      f"Added {member.get('name')} ({ref.public_id}) to team {team_id}")
    return jsonify({'message': 'Member added to team successfully', 'member': member}), 201

@api_route('/api/dashboard/teams/<team_id>/members', methods=['DELETE'])
@team_mgmt_required
def remove_team_member(team_id):
    if not request.args.get('member_id'):
        raise ValidationFailed('Member ID is required')
    return _remove_team_member(team_id, MemberRef.parse(request.args.get('member_id')))

@api_route('/api/dashboard/teams/<team_id>/members/<member_id>', methods=['DELETE'])
@team_mgmt_required
def remove_team_member_by_path(team_id, member_id):
    return _remove_team_member(team_id, MemberRef.parse(member_id))

def _remove_team_member(team_id, ref):
    context = get_current_recruiter()
    member = MembershipService(pocketbase_service).remove_member(team_id, ref)
    log_exec_activity(context.recruiter, 'Remove Team Member', 'team', team_id,
                      f"Removed {member.get('name')} ({ref.public_id}) from team {team_id}")
    return jsonify({'message': 'Member removed from team successfully', 'member': member})


# Club member routes
@api_route('/api/dashboard/club-members', methods=['GET'])
@recruiter_required
def list_club_members():
    result = MemberDirectory(pocketbase_service).search(
        page=parse_int_arg('page', 1),
        limit=parse_int_arg('limit', 50, maximum=500),
        search=request.args.get('search', '').strip(),
        member_type=request.args.get('type', '').strip(),
        team_id=request.args.get('team', '').strip(),
        status=request.args.get('status', '').strip(),
    )
    return jsonify(result)

@api_route('/api/dashboard/club-members', methods=['POST'])
@recruiter_required
def create_club_member():
    context = get_current_recruiter()
    member = MemberDirectory(pocketbase_service).create(get_json_body(), can_manage_teams=context.can_manage_teams)
    log_exec_activity(context.recruiter, 'Create Club Member', 'club_member', member.get('id'),
                      f"Created club member {member.get('name')}")
    return jsonify({'message': 'Club member created successfully', 'member': member}), 201

@api_route('/api/dashboard/club-members/analytics', methods=['GET'])
@recruiter_required
def club_member_analytics():
    return jsonify(fetch_member_analytics(pocketbase_service))

@api_route('/api/dashboard/club-members/<member_id>', methods=['GET'])
@recruiter_required
def get_club_member(member_id):
    member = MemberDirectory(pocketbase_service).get(MemberRef.parse(member_id))
    return jsonify({'member': member})

@api_route('/api/dashboard/club-members/<member_id>', methods=['PUT'])
@recruiter_required
def update_club_member(member_id):
    context = get_current_recruiter()
    member = MemberDirectory(pocketbase_service).update(MemberRef.parse(member_id), get_json_body(),
                                                        can_manage_teams=context.can_manage_teams)
    log_exec_activity(context.recruiter, 'Update Club Member', 'club_member', member_id,
                      f"Updated club member {member.get('name')}")
    return jsonify({'message': 'Club member updated successfully', 'member': member})

@api_route('/api/dashboard/club-members/<member_id>', methods=['DELETE'])
@recruiter_required
def delete_club_member(member_id):
    context = get_current_recruiter()
    MemberDirectory(pocketbase_service).delete(MemberRef.parse(member_id))
    log_exec_activity(context.recruiter, 'Delete Club Member', 'club_member', member_id, f"Deleted club member {member_id}")
    return jsonify({'message': 'Club member deleted successfully'})

@api_route('/api/dashboard/club-members/<member_id>/migrate', methods=['POST'])
@team_mgmt_required
def migrate_club_member(member_id):
    context = get_current_recruiter()
    ref = MemberRef.parse(member_id)
    if not ref.is_legacy:
        raise ValidationFailed('Only NodeX team members can be migrated')

    member, created = MembershipService(pocketbase_service).migrate_legacy_member(ref.record_id)
    if created:
        log_exec_activity(context.recruiter, 'Migrate Member', 'club_member', member.get('id'),
                          f"Migrated {ref.public_id} to club member {member.get('id')}")
        return jsonify({'message': 'NodeX team member migrated', 'member': member, 'created': True}), 201
    return jsonify({'message': 'NodeX team member was already migrated', 'member': member, 'created': False})


# NodeX team roster routes
def roster_ref(member_id):
    # Bare ids address nodex_team directly here
    ref = MemberRef.parse(member_id)
    return ref if ref.is_legacy else MemberRef.legacy(ref.record_id)

@api_route('/api/dashboard/team', methods=['GET'])
@recruiter_required
def list_roster():
    return jsonify({'members': LegacyRoster(pocketbase_service).list()})

@api_route('/api/dashboard/team', methods=['POST'])
@recruiter_required
def create_roster_member():
    context = get_current_recruiter()
    member = LegacyRoster(pocketbase_service).create(get_json_body())
    log_exec_activity(context.recruiter, 'Create NodeX Team Member', 'nodex_team', member.get('id'),
                      f"Added {member.get('name')} to the NodeX team")
    return jsonify({'member': member}), 201

@api_route('/api/dashboard/team/<member_id>', methods=['PUT'])
@recruiter_required
def update_roster_member(member_id):
    context = get_current_recruiter()
    ref = roster_ref(member_id)
    member = LegacyRoster(pocketbase_service).update(ref, get_json_body())
    log_exec_activity(context.recruiter, 'Update NodeX Team Member', 'nodex_team', ref.record_id,
                      f"Updated {member.get('name')}")
    return jsonify({'member': member})

@api_route('/api/dashboard/team/<member_id>', methods=['DELETE'])
@recruiter_required
def delete_roster_member(member_id):
    context = get_current_recruiter()
    ref = roster_ref(member_id)
    LegacyRoster(pocketbase_service).delete(ref)
    log_exec_activity(context.recruiter, 'Delete NodeX Team Member', 'nodex_team', ref.record_id,
                      f"Deleted NodeX team member {ref.record_id}")
    return jsonify({'message': 'Team member deleted successfully'})


# Recruitment routes
@api_route('/api/applications', methods=['GET'])
@recruiter_required
def list_applications():
    kind = request.args.get('type', 'pending')
    applications = ApplicationService(pocketbase_service).list_applications(kind)
    return jsonify({'applications': applications, 'type': kind, 'count': len(applications)})

@api_route('/api/mark-application', methods=['POST'])
@recruiter_required
def mark_application():
    context = get_current_recruiter()
    data = get_json_body()
    application_id = str(data.get('applicationId') or '').strip()
    if not application_id:
        raise ValidationFailed('Validation failed', [{'field': 'applicationId', 'message': 'Application ID is required'}])

    status = data.get('status')
    remarks = sanitize_string(data.get('remarks'), max_length=2000) or ''
    marked = ApplicationService(pocketbase_service).mark(application_id, status, remarks, context.recruiter)
    log_exec_activity(context.recruiter, 'Mark Application', 'application', application_id,
                      f"Marked application {application_id} as {status}")
    return jsonify({'message': f"Application {status} successfully", 'markedApp': marked})

@api_route('/api/rollback-application', methods=['POST'])
@recruiter_required
def rollback_application():
    context = get_current_recruiter()
    data = get_json_body()
    application_id = str(data.get('applicationId') or '').strip()
    if not application_id:
        raise ValidationFailed('Validation failed', [{'field': 'applicationId', 'message': 'Application ID is required'}])

    reason = sanitize_string(data.get('reason'), max_length=2000) or ''
    previous_status, mod_remarks = ApplicationService(pocketbase_service).rollback(application_id, reason,
                                                                                   context.recruiter)
    log_exec_activity(context.recruiter, 'Rollback Application', 'application', application_id,
                      f"Rolled back application {application_id} from {previous_status}")
    return jsonify({
        'message': f"Application successfully rolled back from {previous_status}",
        'modRemarks': mod_remarks,
    })

@api_route('/api/dashboard/stats/applications', methods=['GET'])
@recruiter_required
def application_stats():
    return jsonify({'pending': len(ApplicationService(pocketbase_service).pending_applications())})

@api_route('/api/dashboard/stats/team', methods=['GET'])
@recruiter_required
def team_stats():
    return jsonify({'total': len(pocketbase_service.list_all(LEGACY_MEMBERS_COLLECTION))})

@api_route('/api/dashboard/exec-activity', methods=['GET'])
@recruiter_required
def exec_activity():
    limit = parse_int_arg('limit', 50, maximum=200)
    activities = pocketbase_service.list_items(EXEC_ACTIVITY_COLLECTION, sort='-created',
                                               expand='recruiter_id', per_page=limit)
    for activity in activities:
        expanded = (activity.get('expand') or {}).get('recruiter_id')
        activity['recruiter'] = {
            'assignee': expanded.get('assignee') if expanded else activity.get('performed_by') or 'Unknown',
        }
    return jsonify({'activities': activities})

@api_route('/api/dashboard/exec-activity', methods=['POST'])
@recruiter_required
def record_exec_activity():
    context = get_current_recruiter()
    data = get_json_body()
    action = sanitize_string(data.get('action'), max_length=200) or ''
    resource_type = sanitize_string(data.get('resource_type'), max_length=100) or ''
    if not action or not resource_type:
        raise ValidationFailed('Missing required fields: action and resource_type')

    activity = create_exec_activity(context.recruiter, action, resource_type,
                                    sanitize_string(data.get('resource_id'), max_length=100),
                                    sanitize_string(data.get('details'), max_length=2000))
    return jsonify({'activity': activity}), 201


# Site settings routes
@api_route('/api/web-metadata', methods=['GET'])
def web_metadata():
    metadata = get_web_metadata()
    return jsonify({
        'maintenance': bool(metadata and metadata.get('maintenance')),
        'accepting': is_accepting_applications(),
        'updated': metadata.get('updated') if metadata else None,
    })

@api_route('/api/web-metadata', methods=['POST'])
@recruiter_required
def update_web_metadata():
    context = get_current_recruiter()
    data = get_json_body()
    current = get_web_metadata() or {}
    maintenance = data.get('maintenance', current.get('maintenance', False))
    accepting = data.get('accepting', current.get('accepting', True))
    if not isinstance(maintenance, bool) or not isinstance(accepting, bool):
        raise ValidationFailed('maintenance and accepting must be booleans')

    record = pocketbase_service.create_record(WEB_METADATA_COLLECTION, {
        'maintenance': maintenance,
        'accepting': accepting,
    })
    app.logger.info(f"Site settings changed by recruiter {context.id}: maintenance={maintenance}, accepting={accepting}")
    log_exec_activity(context.recruiter, 'Update Settings', 'web_metadata', record.get('id'),
                      f"maintenance={maintenance}, accepting={accepting}")
    return jsonify({
        'maintenance': record.get('maintenance', maintenance),
        'accepting': record.get('accepting', accepting),
        'updated': record.get('updated'),
    })


# Public routes
@api_route('/api/team', methods=['GET'])
def public_team():
    members = pocketbase_service.list_all(LEGACY_MEMBERS_COLLECTION, sort='category,pos')
    grouped = {
        'direc': [member for member in members if member.get('category') == 'direc'],
        'faculty': [member for member in members if member.get('category') == 'faculty'],
        'exec': [member for member in members if member.get('category') == 'exec'],
        'leads': [member for member in members if member.get('category') == 'lead'],
    }
    return jsonify({'success': True, 'team': grouped, 'totalMembers': len(members)})

JOIN_MIN_WHY_JOIN = 50

def validate_join_form(data):
    """Validate a join form submission, returns the cleaned fields"""
    errors = []

    def add_error(field, message):
        errors.append({'field': field, 'message': message})

    name = str(data.get('name') or '').strip()
    if len(name) < 2:
        add_error('name', 'Name must be at least 2 characters')

    email_ok, email = validate_email(data.get('email'))
    if not email_ok:
        add_error('email', email)

    phone = str(data.get('phone') or '').strip()
    if len(re.sub(r'\D', '', phone)) < 10:
        add_error('phone', 'Phone number must be at least 10 digits')

    batch = str(data.get('batch') or '').strip()
    if len(batch) < 4:
        add_error('batch', 'Please enter your batch year')

    roll_number = str(data.get('rollNumber') or '').strip()
    if not roll_number:
        add_error('rollNumber', 'Roll number is required')

    registration_number = str(data.get('registrationNumber') or '').strip()
    if not registration_number:
        add_error('registrationNumber', 'Registration number is required')

    department = str(data.get('department') or '').strip()
    if not department:
        add_error('department', 'Please select a department')

    tracks = data.get('interestedTracks')
    if not isinstance(tracks, list) or not [track for track in tracks if str(track).strip()]:
        add_error('interestedTracks', 'Please select at least one track')
        tracks = []

    why_join = str(data.get('whyJoin') or '').strip()
    if len(why_join) < JOIN_MIN_WHY_JOIN:
        add_error('whyJoin', f"Please provide at least {JOIN_MIN_WHY_JOIN} characters explaining why you want to join")

    optional = {field: str(data.get(field) or '').strip() for field in ('experience', 'projects', 'otherRemarks')}

    for field, value in [('name', name), ('whyJoin', why_join)] + list(optional.items()):
        if contains_profanity(value):
            add_error(field, 'Content contains inappropriate language')

    if errors:
        raise ValidationFailed('Validation failed', errors)

    cleaned = {
        'name': sanitize_string(name, max_length=120),
        'email': email,
        'phone': sanitize_string(phone, max_length=20),
        'batch': sanitize_string(batch, max_length=20),
        'rollNumber': sanitize_string(roll_number, max_length=40),
        'registrationNumber': sanitize_string(registration_number, max_length=40),
        'department': sanitize_string(department, max_length=120),
        'interestedTracks': [sanitize_string(track, max_length=60) for track in tracks if str(track).strip()],
        'whyJoin': sanitize_string(why_join, max_length=5000),
    }
    for field, value in optional.items():
        cleaned[field] = sanitize_string(value, max_length=5000)
    return cleaned

@api_route('/api/join', methods=['GET', 'POST'])
@limiter.limit("5 per minute", methods=['POST'])
def join_application():
    if request.method == 'GET':
        return jsonify({'message': 'This endpoint only accepts POST requests'}), 405

    client_ip = get_real_ip()
    if is_ip_blocked(client_ip):
        # TODO: confirm with the club leads what a blocked visitor should see, redirect target is config only
        log_security_event('blocked_ip', 'Join form submission from blocked IP', ip_address=client_ip)
        return jsonify({
            'message': 'Redirecting',
            'redirect': app.config['BLOCKED_IP_REDIRECT_URL'],
        }), 303

    if not is_accepting_applications():
        return jsonify({'message': 'Applications are currently closed'}), 403

    data = get_json_body()
    if not verify_turnstile_token(data.get('turnstileToken'), client_ip):
        raise ValidationFailed('Captcha verification failed. Please try again.')

    application = validate_join_form(data)
    application['interestedTracks'] = ', '.join(application['interestedTracks'])
    application['submittedAt'] = utc_now_iso()
    application['marked'] = False

    record = pocketbase_service.create_record(APPLICATIONS_COLLECTION, application)
    app.logger.info(f"Application submitted: {record.get('id')} from IP: {client_ip}")
    return jsonify({
        'message': "Application submitted successfully! We'll get back to you soon.",
        'applicationId': record.get('id'),
    })

@api_route('/api/activity-log', methods=['POST'])
@limiter.limit("60 per minute")
def log_site_activity():
    data = get_json_body()
    entry = {
        'ip_address': get_real_ip() or 'unknown',
        'user_agent': request.headers.get('User-Agent', 'unknown'),
        'referrer': request.headers.get('Referer'),
        'timestamp': utc_now_iso(),
        'action': sanitize_string(data.get('action'), max_length=100) or 'page_view',
        'page_url': sanitize_url(data.get('page_url') or request.headers.get('Referer'), max_length=500) or 'unknown',
    }
    if isinstance(data.get('fingerprint'), dict):
        entry['fingerprint'] = data['fingerprint']
    if isinstance(data.get('additional_data'), dict):
        entry['additional_data'] = data['additional_data']

    try:
        pocketbase_service.create_record(ACTIVITY_LOG_COLLECTION, entry)
    except NodeXError as e:
        app.logger.error(f"Failed to log activity: {e.message}")
        return jsonify({'success': False, 'error': 'Failed to log activity'}), 500
    return jsonify({'success': True})


# Member dashboard routes
@api_route('/api/member-auth', methods=['POST'])
@limiter.limit("10 per minute")
def member_auth():
    data = get_json_body()
    key = str(data.get('key') or '').strip()
    if not key:
        return jsonify({'success': False, 'error': 'Authentication key is required'}), 400

    member, key_type = authenticate_member_key(key)
    if not member:
        log_security_event('failed_member_login', 'Invalid member authentication key')
        return jsonify({'success': False, 'error': 'Invalid authentication key'}), 401

    if member.get('status') != 'active':
        app.logger.warning(f"Inactive member {member['id']} attempted to log in")
        return jsonify({'success': False, 'error': 'Member account is not active'}), 403

    log_member_activity(member['id'], 'Login', 'authentication', None, f"Member logged in using {key_type} key")

    response = jsonify({
        'success': True,
        'message': 'Authentication successful',
        'member': {
            'id': member['id'],
            'name': member.get('name'),
            'email': member.get('email'),
            'member_type': member.get('member_type'),
            'position': member.get('position'),
        },
    })
    set_member_cookie(response, build_member_session(member, key_type))
    return response

@api_route('/api/member-auth-check', methods=['GET'])
def member_auth_check():
    session_data, expired = read_member_session()
    if not session_data:
        body = {'authenticated': False, 'member': None}
        if expired:
            body['expired'] = True
        return jsonify(body)
    return jsonify({'authenticated': True, 'member': session_data['member'], 'keyType': session_data.get('keyType')})

@api_route('/api/member-logout', methods=['POST'])
def member_logout():
    member = get_current_member()
    if member:
        log_member_activity(member['id'], 'Logout', 'authentication', None, 'Member logged out')

    response = jsonify({'success': True, 'message': 'Logged out successfully'})
    clear_member_cookie(response)
    return response

def current_member_record():
    member = get_current_member()
    try:
        return pocketbase_service.get_record(MEMBERS_COLLECTION, member['id'])
    except NotFound:
        raise AuthInvalid('Member account no longer exists')

@api_route('/api/member-dashboard/profile', methods=['GET'])
@member_required
def member_profile():
    record = current_member_record()

    teams = []
    for team_id in record.get('teams') or []:
        try:
            team = pocketbase_service.get_record(TEAMS_COLLECTION, team_id)
        except NotFound:
            continue
        teams.append({'id': team['id'], 'name': team.get('name'), 'category': team.get('category')})

    log_member_activity(record['id'], 'View Profile', 'profile', record['id'], 'Viewed own profile')
    profile_fields = ('id', 'name', 'email', 'student_id', 'phone', 'member_type', 'position', 'department', 'year',
                      'bio', 'linkedin_url', 'github_url', 'portfolio_url', 'status', 'created', 'updated')
    profile = {field: record.get(field) for field in profile_fields}
    profile['skills'] = record.get('skills') or []
    return jsonify({'success': True, 'profile': profile, 'teams': teams})

@api_route('/api/member-dashboard/teams', methods=['GET'])
@member_required
def member_teams():
    record = current_member_record()
    teams = TeamService(pocketbase_service).teams_for_member(record)

    log_member_activity(record['id'], 'View Teams', 'teams', None,
                        f"Viewed {len(teams)} teams" if teams else 'Viewed empty teams list')
    body = {'success': True, 'teams': teams}
    if not teams:
        body['message'] = 'You are not assigned to any teams yet.'
    return jsonify(body)

@api_route('/api/member-dashboard/teams/<team_id>', methods=['GET'])
@member_required
def member_team_detail(team_id):
    record = current_member_record()
    if team_id not in (record.get('teams') or []):
        log_member_activity(record['id'], 'Unauthorized Team Access', 'team', team_id,
                            f"Attempted to access team {team_id} without permission")
        return jsonify({'success': False, 'error': "You don't have access to this team"}), 403

    try:
        team = pocketbase_service.get_record(TEAMS_COLLECTION, team_id)
    except NotFound:
        return jsonify({'success': False, 'error': 'Team not found'}), 404

    members = MembershipService(pocketbase_service).team_members(team_id)
    legacy_identities = {(legacy.get('name'), legacy.get('email') or '')
                         for legacy in pocketbase_service.list_all(LEGACY_MEMBERS_COLLECTION)}

    formatted = [{
        'id': member['id'],
        'name': member.get('name'),
        'email': member.get('email'),
        'position': member.get('position') or None,
        'member_type': member.get('member_type'),
        'department': member.get('department') or None,
        'skills': member.get('skills') or [],
        'bio': member.get('bio') or None,
        'linkedin_url': member.get('linkedin_url') or None,
        'github_url': member.get('github_url') or None,
        'portfolio_url': member.get('portfolio_url') or None,
        'isNodexMember': (member.get('name'), member.get('email') or '') in legacy_identities,
    } for member in members]

    log_member_activity(record['id'], 'View Team Details', 'team', team_id,
                        f"Viewed details for team: {team.get('name')}")
    return jsonify({
        'success': True,
        'team': {field: team.get(field) for field in ('id', 'name', 'description', 'category', 'created', 'updated')},
        'members': formatted,
    })


if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    app.logger.info(f"Starting server on port {port}")
    app.run(host='0.0.0.0', port=port, debug=False)
