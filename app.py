"""
Smart Account Orchestration Endpoint

A Flask application that:
1. Reports the Kernel smart account address controlled by the configured key
2. Submits one or two contract calls as gas-sponsored UserOperations,
   running approve-then-swap batches step by step
"""

import asyncio
import logging
import os
from typing import Callable, Optional, Tuple

from flask import Flask, jsonify, request

from config import DEFAULT_HOST, DEFAULT_PORT, ConfigurationError, SmartAccountConfig
from orchestrator import OrchestrationError, execute_calls
from smart_account import SmartAccountContext, create_smart_account_context
from user_operations import parse_calls

logger = logging.getLogger(__name__)

SMART_ACCOUNT_ROUTE = "/api/smartaccount"


class SmartAccountHandler:
    """Serves the orchestration endpoint; builds a fresh account context per request"""

    def __init__(
        self,
        config_loader: Callable[[], SmartAccountConfig] = SmartAccountConfig,
        context_factory: Callable[[SmartAccountConfig], SmartAccountContext] = create_smart_account_context,
    ):
        self.app = Flask(__name__)
        self.config_loader = config_loader
        self.context_factory = context_factory
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up Flask routes"""
        self.app.route(SMART_ACCOUNT_ROUTE, methods=["GET"])(self.get_account)
        self.app.route(SMART_ACCOUNT_ROUTE, methods=["POST"])(self.submit_calls)
        self.app.route("/health", methods=["GET"])(self.health_check)

    def _load_config(self) -> Tuple[Optional[SmartAccountConfig], Optional[str]]:
        """Return the configuration, or the error to report when it is absent or invalid"""
        try:
            return self.config_loader(), None
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return None, str(e)

    def get_account(self):
        """Return the smart account address"""
        config, error = self._load_config()
        if config is None:
            return jsonify({"error": error}), 500

        try:
            context = self.context_factory(config)
            return jsonify({"address": context.address})
        except Exception as e:
            logger.exception(f"API {SMART_ACCOUNT_ROUTE} GET error: {e}")
            return jsonify({"error": str(e)}), 500

    def submit_calls(self):
        """Submit the posted calls as sponsored UserOperations"""
        config, error = self._load_config()
        if config is None:
            return jsonify({"error": error}), 500

        try:
            payload = request.get_json(silent=True) or {}
            calls = parse_calls(payload.get("calls") if isinstance(payload, dict) else None)
            context = self.context_factory(config)
            user_op_hash = asyncio.run(execute_calls(context, calls, config.settings))
            return jsonify({"userOpHash": user_op_hash})
        except OrchestrationError as e:
            return jsonify({"error": e.message}), e.status_code
        except Exception as e:
            logger.exception(f"API {SMART_ACCOUNT_ROUTE} POST error: {e}")
            return jsonify({"error": str(e) or e.__class__.__name__}), 500

    def health_check(self):
        """Dead-simple health check endpoint"""
        return "OK", 200

    def run(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Run the Flask application"""
        self.app.run(host=host, port=port)


def create_app(**kwargs) -> Flask:
    """Create the Flask application, e.g. for a WSGI server"""
    return SmartAccountHandler(**kwargs).app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    handler = SmartAccountHandler()
    handler.run(
        host=os.environ.get("HOST", DEFAULT_HOST),
        port=int(os.environ.get("PORT", DEFAULT_PORT)),
    )
