#!/usr/bin/env python3
"""
Image host: upload images, share them as raw files or as preview pages
with Open Graph / Twitter card tags
"""

import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional

from flask import Flask, Response, request, jsonify, render_template_string, send_from_directory
from werkzeug.exceptions import HTTPException, BadRequest, NotFound, InternalServerError

from upload_store import UploadStore, NameGenerationError

HOST = "0.0.0.0"
PORT = 5000
DOMAIN = "https://i.kuuichi.xyz"
UPLOADS_DIR = "./files"
NAME_LENGTH = 6
ALLOWED_EXTENSIONS = frozenset({'.jpg', '.jpeg', '.png', '.gif', '.bmp'})
ALL_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


@dataclass
class ServerConfig:
    upload_dir: str = UPLOADS_DIR
    base_url: str = DOMAIN
    host: str = HOST
    port: int = PORT
    name_length: int = NAME_LENGTH
    allowed_extensions: FrozenSet[str] = ALLOWED_EXTENSIONS
    max_name_attempts: int = 5

    def __post_init__(self):
        self.base_url = self.base_url.rstrip('/')
        self.allowed_extensions = frozenset(ext.lower() for ext in self.allowed_extensions)

    def page_url(self, name: str) -> str:
        return f"{self.base_url}/f/{name}"

    def raw_url(self, name: str) -> str:
        return f"{self.base_url}/files/{name}"


def log(message: str):
    print(f"[{datetime.now():%Y-%m-%d %H:%M:%S}] {message}", flush=True)


HOME_HTML = '''<!DOCTYPE html>
<html>
<head>
    <title>File Upload</title>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body>
    <h1>File Upload</h1>
    <form action="/upload" method="post" enctype="multipart/form-data">
        <input type="file" name="file" accept=".jpg,.jpeg,.png,.gif,.bmp" required>
        <button type="submit">Upload</button>
    </form>
</body>
</html>
'''

PREVIEW_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
    <title>{{ title }}</title>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta property="og:title" content="{{ title }}">
    <meta property="og:description" content="{{ description }}">
    <meta property="og:image" content="{{ image_url }}">
    {%- if dimensions %}
    <meta property="og:image:width" content="{{ dimensions[0] }}">
    <meta property="og:image:height" content="{{ dimensions[1] }}">
    {%- endif %}
    <meta property="og:url" content="{{ page_url }}">
    <meta name="twitter:card" content="summary_large_image">
    <meta name="twitter:title" content="{{ title }}">
    <meta name="twitter:description" content="{{ description }}">
    <meta name="twitter:image" content="{{ image_url }}">
</head>
<body>
    <div>
        <img src="{{ image_url }}" alt="{{ title }}">
    </div>
</body>
</html>
'''


def plain_text(message: str, code: int) -> Response:
    return Response(message + "\n", status=code, mimetype='text/plain')


def file_extension(filename: str) -> str:
    """Lowercased suffix from the last dot of the final path element, dot included"""
    base = filename.rsplit('/', 1)[-1]
    dot = base.rfind('.')
    return base[dot:].lower() if dot >= 0 else ''


def is_hidden(name: str) -> bool:
    # in-progress writes are dotfiles
    return os.path.basename(name).startswith('.')


def create_app(config: Optional[ServerConfig] = None) -> Flask:
    config = config or ServerConfig()
    store = UploadStore(config.upload_dir)

    app = Flask(__name__)
    app.config['IMAGE_HOST'] = config
    app.extensions['upload_store'] = store

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404:
            return plain_text("404 page not found", 404)
        if e.code == 405:
            resp = plain_text("Invalid request method", 405)
            if getattr(e, 'valid_methods', None):
                resp.headers['Allow'] = ', '.join(e.valid_methods)
            return resp
        return plain_text(e.description, e.code)

    @app.route('/', methods=ALL_METHODS, provide_automatic_options=False)
    def home():
        return HOME_HTML

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/upload', methods=['POST'], provide_automatic_options=False)
    def upload():
        file = request.files.get('file')
        if file is None or not file.filename:
            raise BadRequest("Error retrieving file")

        try:
            store.ensure_directory()
        except OSError as e:
            log(f"Could not create {config.upload_dir}: {e}")
            raise InternalServerError("Could not create directory")

        ext = file_extension(file.filename)
        if ext not in config.allowed_extensions:
            raise BadRequest("Invalid file type")

        try:
            name, size = store.store(file.stream, ext, config.name_length, config.max_name_attempts)
        except NameGenerationError as e:
            log(f"Random name generation failed: {e}")
            raise InternalServerError("Error generating random filename")
        except OSError as e:
            log(f"Saving upload failed: {e}")
            raise InternalServerError("Error saving file")

        log(f"File uploaded: {name} ({size} bytes)")
        return jsonify({
            'imageUrl': config.page_url(name),
            'rawUrl': config.raw_url(name),
        })

    @app.route('/f/<path:name>', methods=ALL_METHODS, provide_automatic_options=False)
    def preview(name):
        size = None if is_hidden(name) else store.stat(name)
        if size is None:
            raise NotFound()

        try:
            total_uploads = store.count()
        except OSError:
            total_uploads = 0

        description = f"Size: {size / (1024 * 1024):.2f} MB - Total uploads: {total_uploads}"
        html = render_template_string(
            PREVIEW_TEMPLATE,
            title=name,
            description=description,
            image_url=config.raw_url(name),
            page_url=config.page_url(name),
            dimensions=store.image_dimensions(name),
        )
        resp = Response(html, status=200, mimetype='text/html')
        resp.headers['Access-Control-Allow-Origin'] = '*'
        return resp

    @app.route('/files/<path:name>', methods=['GET', 'HEAD'])
    def raw_file(name):
        if is_hidden(name):
            raise NotFound()
        return send_from_directory(os.path.abspath(config.upload_dir), name)

    return app


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    config = ServerConfig()
    if len(argv) > 0:
        config.port = int(argv[0])
    if len(argv) > 1:
        config.upload_dir = argv[1]

    app = create_app(config)
    log(f"Server starting on :{config.port}")
    log(f"Domain: {config.base_url}")
    log(f"Uploads directory: {os.path.abspath(config.upload_dir)}")
    app.run(host=config.host, port=config.port, debug=False, threaded=True)


if __name__ == '__main__':
    main()
