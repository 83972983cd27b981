from nodeagent import create_app
from nodeagent.config import ProductionConfig

application = app = create_app(ProductionConfig)

if __name__ == '__main__':
    app.run()
