# Activation Code Server
# Run with: python server.py

from activation import create_app

app = create_app()

if __name__ == '__main__':
    port = app.config['PORT']  # PORT from environment or default to 5000
    store = app.extensions['activation'].repository
    print("=" * 60)
    print("🔐 Activation Code Server")
    print("=" * 60)
    print(f"🌐 API: http://0.0.0.0:{port}/api")
    print(f"📄 Codes file: {app.config['CODES_FILE']}")
    if store.remote_enabled:
        print(f"☁️  Writeback: {app.config['GITHUB_OWNER']}/{app.config['GITHUB_REPO']}"
              f"@{app.config['GITHUB_BRANCH']}:{app.config['GITHUB_FILE_PATH']}")
    else:
        print("⚠️  GitHub writeback not configured, changes stay local!")
    if not app.config['ADMIN_PASSWORD']:
        print("⚠️  ADMIN_PASSWORD is not set, admin endpoints are open!")
    print("=" * 60)
    app.run(host='0.0.0.0', port=port, debug=False)
