from climblog.records import ClimbRecord, Role, UserRecord, new_id


def make_user(db, name, roles=None):
    user = UserRecord(
        id=new_id(),
        email=f"{name}@example.com",
        username=name,
        password_hash="not-a-real-hash",
        roles=roles or [Role.USER.value],
        is_verified=True,
    )
    with db.transaction() as tx:
        tx.add(user)
    return user


def make_climb(db, owner, title="Crimp Line"):
    climb = ClimbRecord(id=new_id(), title=title, grade="6b", created_by=owner.id)
    with db.transaction() as tx:
        tx.add(climb)
    return climb
