from sqlmodel import SQLModel, create_engine, Session
from garage.config import get_settings
from garage.models import *  # noqa: F401,F403 (registra as tabelas no metadata)

database_url = get_settings().database_url

# O SQLite só aceita a conexão na thread que a abriu; o FastAPI usa várias
connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
engine = create_engine(database_url, connect_args=connect_args)

def create_db_and_tables(bind=None):
    """
    Cria as tabelas da oficina (veículos, estoque, impostos, orçamentos e ordens).
    `bind` permite usar outro engine, como o SQLite em memória dos testes;
    sem ele, usa o banco de GARAGE_DATABASE_URL.
    """
    SQLModel.metadata.create_all(bind or engine)

def get_session():
    """
    Sessão por requisição, injetada nas rotas com Depends(get_session).
    Os gateways decidem quando confirmar; a sessão só é fechada aqui.
    """
    with Session(engine) as session:
        yield session
