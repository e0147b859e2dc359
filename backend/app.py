import os
from datetime import timedelta
from typing import Dict, Optional

import bcrypt
from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    jwt_required,
)
from flask_pymongo import PyMongo
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .carousel import DEFAULT_CAROUSEL_CAPACITY, CarouselManager, ReferencePolicy
from .errors import ApiError, StoreFailure, ValidationError
from .products import ProductManager, serialize_product
from .store import Store
from .uploads import ImageUploads

load_dotenv()

ADMIN_ROLE = "admin"


def load_settings(root_path: str) -> Dict[str, object]:
    """Settings read from the environment; create_app's ``config`` overrides them."""
    cors_origins = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "5"))
    return {
        "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017/totalfilter"),
        "MONGO_TIMEOUT_MS": int(os.getenv("MONGO_TIMEOUT_MS", "5000")),
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(hours=1),
        "ADMIN_USERNAME": (os.getenv("ADMIN_USERNAME", "admin") or "admin").strip(),
        "ADMIN_PASSWORD_HASH": (os.getenv("ADMIN_PASSWORD_HASH") or "").strip(),
        "MAX_CONTENT_LENGTH": max_upload_mb * 1024 * 1024,
        "UPLOAD_FOLDER": os.getenv("UPLOAD_FOLDER") or os.path.join(root_path, "uploads"),
        "PUBLIC_BASE_URL": (os.getenv("PUBLIC_BASE_URL") or "").strip(),
        "CAROUSEL_REFERENCE_FORMAT": os.getenv("CAROUSEL_REFERENCE_FORMAT", "filename"),
        "CAROUSEL_CAPACITY": int(
            os.getenv("CAROUSEL_CAPACITY", str(DEFAULT_CAROUSEL_CAPACITY))
        ),
        "CORS_ALLOWED_ORIGINS": cors_origins or ["*"],
        "TRUSTED_PROXY_HOPS": os.getenv("TRUSTED_PROXY_HOPS", "1"),
    }


def create_app(config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # --- Configuration ---
    app.config.update(load_settings(app.root_path))
    if config:
        app.config.update(config)

    # Honor proxy headers so generated image links keep the public origin.
    try:
        trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Initialize extensions ---
    origins = app.config["CORS_ALLOWED_ORIGINS"]
    CORS(app, supports_credentials=True, origins="*" if origins == ["*"] else origins)

    jwt = JWTManager(app)

    if database is None:
        timeout_ms = int(app.config["MONGO_TIMEOUT_MS"])
        mongo = PyMongo(
            app,
            serverSelectionTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
        database = mongo.db
        if database is None:
            raise RuntimeError("MONGO_URI must name a database, e.g. mongodb://host/totalfilter")

    store = Store(database)
    products = ProductManager(store)
    carousel = CarouselManager(store, capacity=int(app.config["CAROUSEL_CAPACITY"]))
    reference_policy = ReferencePolicy(
        app.config["CAROUSEL_REFERENCE_FORMAT"], base_url=app.config["PUBLIC_BASE_URL"]
    )
    uploads = ImageUploads(
        app.config["UPLOAD_FOLDER"], base_url=app.config["PUBLIC_BASE_URL"]
    )
    app.extensions["totalfilter"] = {
        "store": store,
        "products": products,
        "carousel": carousel,
        "reference_policy": reference_policy,
        "uploads": uploads,
    }

    # --- Authorization ---

    @jwt.unauthorized_loader
    def missing_token(reason: str):
        return jsonify({"message": "Authentication required."}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason: str):
        return jsonify({"message": "Invalid authentication token."}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "Your session has expired. Please log in again."}), 401

    def require_admin_user():
        claims = get_jwt()
        if claims.get("role") != ADMIN_ROLE:
            return (
                jsonify({"message": "You need additional permissions to perform this action."}),
                403,
            )
        return None

    # --- Error handling ---

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        if isinstance(error, StoreFailure):
            app.logger.error("Store failure on %s %s", request.method, request.path, exc_info=error)
            return jsonify({"message": StoreFailure.default_message}), error.status_code
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_route_not_found(error):
        return jsonify({"message": "Route not found."}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"message": "Method not allowed."}), 405

    @app.errorhandler(413)
    def handle_payload_too_large(error):
        limit_mb = int(app.config["MAX_CONTENT_LENGTH"]) // (1024 * 1024)
        return jsonify({"message": f"Uploads are limited to {limit_mb} MB."}), 413

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"message": error.description}), error.code
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Internal server error."}), 500

    # --- Helpers ---

    def read_payload() -> Dict:
        payload = request.form.to_dict() if request.form else {}
        if not payload:
            payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            raise ValidationError("The request body must be a JSON object.")
        return payload

    # --- ROUTES ---

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(uploads.upload_folder, filename)

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        username = str(payload.get("username", "")).strip()
        password = str(payload.get("password", ""))

        if not username or not password:
            return jsonify({"message": "Username and password are required."}), 400

        password_hash = app.config["ADMIN_PASSWORD_HASH"]
        authenticated = False
        if password_hash and username == app.config["ADMIN_USERNAME"]:
            try:
                authenticated = bcrypt.checkpw(
                    password.encode("utf-8"), password_hash.encode("utf-8")
                )
            except ValueError:
                app.logger.error("ADMIN_PASSWORD_HASH is not a valid bcrypt hash")

        if not authenticated:
            app.logger.warning("Rejected login for %s", username)
            return jsonify({"message": "Invalid credentials"}), 401

        token = create_access_token(identity=username, additional_claims={"role": ADMIN_ROLE})
        return jsonify({"access_token": token})

    @app.route("/api/upload", methods=["POST"])
    @jwt_required()
    def upload_image():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        image_file = request.files.get("image")
        if not image_file:
            raise ValidationError("No image was uploaded.")

        filename = uploads.save(image_file)
        return jsonify(
            {"imageUrl": uploads.build_url(filename, request.host_url), "fileName": filename}
        )

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products():
        product_docs = products.list(request.args.get("search"))
        return jsonify({"products": [serialize_product(document) for document in product_docs]})

    @app.route("/api/products/new-releases", methods=["GET"])
    def list_new_releases():
        product_docs = products.list_new_releases()
        return jsonify({"products": [serialize_product(document) for document in product_docs]})

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        return jsonify({"product": serialize_product(products.get(product_id))})

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        created_product = products.create(read_payload())
        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(created_product),
                }
            ),
            201,
        )

    @app.route("/api/products/upload", methods=["POST"])
    @jwt_required()
    def create_product_with_upload():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        image_file = request.files.get("image")
        if not image_file or not image_file.filename:
            raise ValidationError("No image was uploaded.")

        payload = request.form.to_dict()
        products.ensure_valid_upload_fields(payload)

        filename = uploads.save(image_file)
        try:
            created_product = products.create_from_upload(
                payload, uploads.build_url(filename, request.host_url)
            )
        except ApiError:
            uploads.remove(filename)
            raise

        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(created_product),
                }
            ),
            201,
        )

    @app.route("/api/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        updated_product = products.update(product_id, read_payload())
        return jsonify(
            {
                "message": "Product updated successfully.",
                "product": serialize_product(updated_product),
            }
        )

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        products.delete(product_id)
        return jsonify({"message": "Product removed successfully."})

    # Carousel
    @app.route("/api/carousel", methods=["GET"])
    def list_carousel_images():
        return jsonify({"images": carousel.list_images()})

    @app.route("/api/carousel", methods=["POST"])
    @jwt_required()
    def add_carousel_image():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        image_file = request.files.get("image")
        if image_file and image_file.filename:
            filename = uploads.save(image_file)
            try:
                images = carousel.add_image(
                    reference_policy.normalize(filename, request.host_url)
                )
            except ApiError:
                uploads.remove(filename)
                raise
        else:
            payload = read_payload()
            raw_reference = (
                payload.get("fileName") or payload.get("reference") or payload.get("imageUrl")
            )
            if not raw_reference:
                raise ValidationError("Image file name not provided.")
            images = carousel.add_image(
                reference_policy.normalize(raw_reference, request.host_url)
            )

        return jsonify({"message": "Image added to the carousel.", "images": images})

    @app.route("/api/carousel/<path:reference>", methods=["DELETE"])
    @jwt_required()
    def remove_carousel_image(reference: str):
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        images = carousel.remove_image(reference_policy.normalize(reference, request.host_url))
        return jsonify({"message": "Image removed from the carousel.", "images": images})

    @app.route("/api/carousel", methods=["DELETE"])
    @jwt_required()
    def reset_carousel():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        carousel.reset()
        return jsonify({"message": "Carousel cleared.", "images": []})

    return app
