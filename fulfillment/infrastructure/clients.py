from typing import Optional

from sqlalchemy.orm import Session

from fulfillment.domain.models import ClientSnapshot

from .db import SessionRunner
from .tables import ClientRecord, UserRecord


class SqlClientDirectory(SessionRunner):
    """Resolves an id against standalone clients first, then user accounts."""

    async def resolve(self, client_id: str) -> Optional[ClientSnapshot]:
        def work(session: Session):
            client = session.get(ClientRecord, client_id)
            if client is not None:
                return ClientSnapshot(
                    id=client.id,
                    name=client.name,
                    email=client.email,
                    phone=client.phone,
                    address=client.address,
                )
            user = session.get(UserRecord, client_id)
            if user is not None:
                return ClientSnapshot(
                    id=user.id,
                    name=f"{user.first_name} {user.last_name}".strip(),
                    email=user.email,
                    phone=user.phone,
                    address=user.address,
                )
            return None
        return await self.run(work)

    async def save_client(self, client: ClientSnapshot) -> ClientSnapshot:
        def work(session: Session):
            session.merge(ClientRecord(**client.model_dump()))
            return client
        return await self.run(work)

    async def save_user(
        self,
        user_id: str,
        first_name: str,
        last_name: str = "",
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        def work(session: Session):
            session.merge(
                UserRecord(
                    id=user_id,
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    phone=phone,
                    address=address,
                )
            )
        await self.run(work)
