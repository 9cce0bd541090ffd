from flask import Flask

from tlswap.relayer.service import RelayerService

from relayer_routes import relayer_bp, init_relayer_bp


def create_app(service=None):
    """Flask 앱을 만든다. service가 없으면 개발넷 구성을 사용한다."""
    if service is None:
        service = RelayerService.devnet()

    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False

    init_relayer_bp(service)
    app.register_blueprint(relayer_bp)
    app.extensions["tlswap"] = service
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
