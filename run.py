#!/usr/bin/env python3
import os
import urllib.parse

from nodeagent import create_app
from nodeagent.config import DevelopmentConfig

app = create_app(DevelopmentConfig)


def list_routes():
    output = []
    for rule in app.url_map.iter_rules():
        methods = ','.join(sorted(rule.methods - {'HEAD', 'OPTIONS'}))
        line = urllib.parse.unquote(f"{rule.endpoint:35s} {methods:20s} {rule}")
        output.append(line)

    print(f"\nnodeagent rodando contra {app.config.get('HYPERV_HOST')}")
    print("===========================")
    for line in sorted(output):
        print(line)
    print("===========================\n")


if __name__ == '__main__':
    # O reloader do modo debug executa o módulo duas vezes; lista as rotas só no processo filho
    if os.environ.get("WERKZEUG_RUN_MAIN") == "true":
        list_routes()
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
