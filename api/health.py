"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import json

from motorwise.utils.config import PipelineConfig


def health_payload(config: PipelineConfig) -> dict:
    """Service status plus which enrichment collaborators are live."""
    return {
        "status": "ok",
        "service": "motorwise-backend",
        "environment": config.environment,
        "vision_enabled": config.vision_enabled,
        "text_generation_enabled": config.text_generation_enabled,
        "register_offline": config.register_offline,
        "mot_history_offline": config.mot_history_offline,
    }


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        """Handle GET request."""
        self.send_response(200)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        response = json.dumps(health_payload(PipelineConfig.from_env()))
        self.wfile.write(response.encode('utf-8'))

    def do_POST(self):
        """Handle POST request (same as GET for health check)."""
        self.do_GET()
