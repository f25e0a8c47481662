from sqlalchemy.orm import Session

from src.alwayscare.infra.repositories import SqlUserRepo, SqlAnalysisRecordRepo

class SqlAlchemyUoW:
    def __init__(self, db: Session):
        self.db = db

        self.users = SqlUserRepo(db)
        self.records = SqlAnalysisRecordRepo(db)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()
