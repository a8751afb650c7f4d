# igcache/routes.py
# HTTP API over the IG package service.

import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request
from flasgger import swag_from

from igcache.context import get_ig_package_service
from igcache.errors import (ArchiveValidationError, PackageNotFoundError, PersistenceError,
                            RegistryUnavailableError, ServiceClosedError)

logger = logging.getLogger(__name__)

igs_bp = Blueprint('igs', __name__, url_prefix='/igs')


def check_api_key():
    expected = current_app.config.get('API_KEY')
    if not expected:
        return None
    api_key = request.headers.get('X-API-Key')
    if not api_key:
        logger.error("API key missing in request")
        return jsonify({"status": "error", "message": "API key missing"}), 401
    if api_key != expected:
        logger.error("Invalid API key provided.")
        return jsonify({"status": "error", "message": "Invalid API key"}), 401
    return None


def error_response(status_code, message):
    return jsonify({"status": "error", "code": status_code, "message": message}), status_code


def api_endpoint(view):
    """API key check plus mapping of cache errors to HTTP status codes."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        auth_error = check_api_key()
        if auth_error:
            return auth_error
        try:
            return view(*args, **kwargs)
        except (ArchiveValidationError, ValueError) as e:
            logger.error(f"[API] Invalid request to {request.path}: {e}")
            return error_response(400, str(e))
        except PackageNotFoundError as e:
            return error_response(404, str(e))
        except RegistryUnavailableError as e:
            logger.error(f"[API] Upstream failure for {request.path}: {e}")
            return error_response(502, str(e))
        except (PersistenceError, ServiceClosedError) as e:
            logger.error(f"[API] Package cache unavailable for {request.path}: {e}")
            return error_response(503, str(e))
        except Exception as e:
            logger.error(f"[API] Unexpected error in {request.path}: {e}", exc_info=True)
            return error_response(500, f"Unexpected server error: {e}")
    return wrapper


def _flag(value, default=True):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def _registered(archive):
    return jsonify({"status": "success", "name": archive.name, "version": archive.version})


@igs_bp.route('/register', methods=['POST'])
@swag_from({
    'tags': ['IG Packages'],
    'summary': 'Register an IG package by name and version, or by download URL.',
    'security': [{'ApiKeyAuth': []}],
    'consumes': ['application/json'],
    'parameters': [{
        'name': 'body',
        'in': 'body',
        'required': True,
        'schema': {
            'type': 'object',
            'properties': {
                'name': {'type': 'string', 'example': 'hl7.fhir.us.core'},
                'version': {'type': 'string', 'example': '6.1.0', 'default': 'latest'},
                'includeDependency': {'type': 'boolean', 'default': True},
                'downloadUrl': {'type': 'string', 'example': 'https://example.org/package.tgz'}
            }
        }
    }],
    'responses': {
        '200': {'description': 'Package registered.'},
        '400': {'description': 'Missing name or invalid package.'},
        '404': {'description': 'Package not found in cache or on any registry.'}
    }
})
@api_endpoint
def register_ig():
    data = request.get_json(silent=True)
    if not data:
        return error_response(400, "Missing resource")
    include_dependency = _flag(data.get('includeDependency'))
    service = get_ig_package_service()

    download_url = data.get('downloadUrl') or ''
    if download_url:
        archive = service.register_ig_from_url(download_url, load_dependencies=include_dependency)
        if archive is None:
            return error_response(404, f"Failed to download IG from {download_url}")
        return _registered(archive)

    name = data.get('name') or ''
    version = data.get('version') or 'latest'
    if not name:
        return error_response(400, "Missing name")
    archive = service.register_ig(name, version, load_dependencies=include_dependency)
    if archive is None:
        return error_response(404, f"IG {name}#{version} not found")
    return _registered(archive)


@igs_bp.route('/upload', methods=['POST'])
@swag_from({
    'tags': ['IG Packages'],
    'summary': 'Upload and register an IG package archive (.tgz).',
    'security': [{'ApiKeyAuth': []}],
    'consumes': ['multipart/form-data'],
    'parameters': [
        {'name': 'file', 'in': 'formData', 'type': 'file', 'required': True},
        {'name': 'includeDependency', 'in': 'formData', 'type': 'boolean', 'default': False}
    ],
    'responses': {
        '200': {'description': 'Package registered.'},
        '400': {'description': 'No file uploaded or invalid package.'}
    }
})
@api_endpoint
def upload_ig():
    if not request.files:
        logger.error("No file uploaded")
        return error_response(400, "No file uploaded")
    upload = request.files.get('file') or next(iter(request.files.values()))
    include_dependency = _flag(request.form.get('includeDependency'), default=False)
    archive = get_ig_package_service().register_ig_archive(upload.read(), load_dependencies=include_dependency)
    return _registered(archive)


@igs_bp.route('/<name>/<version>/dependencies', methods=['GET'])
@swag_from({
    'tags': ['IG Packages'],
    'summary': 'Direct dependencies declared by a cached IG package.',
    'parameters': [
        {'name': 'name', 'in': 'path', 'type': 'string', 'required': True},
        {'name': 'version', 'in': 'path', 'type': 'string', 'required': True}
    ],
    'responses': {'200': {'description': 'Dependency list (empty when the package is not cached).'}}
})
@api_endpoint
def dependency_graph(name, version):
    return jsonify(get_ig_package_service().get_dependency_graph(name, version))


@igs_bp.route('/<name>/<version>/conformance', methods=['GET'])
@swag_from({
    'tags': ['IG Packages'],
    'summary': 'Basic conformance report listing the resources of a cached IG package.',
    'parameters': [
        {'name': 'name', 'in': 'path', 'type': 'string', 'required': True},
        {'name': 'version', 'in': 'path', 'type': 'string', 'required': True}
    ],
    'responses': {
        '200': {'description': 'Conformance report.'},
        '404': {'description': 'Package not cached.'}
    }
})
@api_endpoint
def conformance_report(name, version):
    return jsonify(get_ig_package_service().generate_conformance_report(name, version))


@igs_bp.route('/<name>/<version>', methods=['DELETE'])
@swag_from({
    'tags': ['IG Packages'],
    'summary': 'Remove a package from the cache.',
    'security': [{'ApiKeyAuth': []}],
    'responses': {'200': {'description': 'Removed (or was not cached).'}}
})
@api_endpoint
def remove_ig(name, version):
    removed = get_ig_package_service().remove_ig_package(name, version)
    return jsonify({"status": "success", "name": name, "version": version, "removed": removed})
