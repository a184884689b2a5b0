from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload

from insighthub.api.deps import current_user, get_db
from insighthub.api.schemas import CreateCommentBody, UpdateCommentBody
from insighthub.core.validation import is_owner_or_admin
from insighthub.models.comment import Comment
from insighthub.models.user import User

router = APIRouter(prefix="/comments", tags=["comments"])


def _get_comment(db: Session, user: User, comment_id: int) -> Comment:
    comment = (db.query(Comment)
               .filter(Comment.id == comment_id, Comment.organization_id == user.organization_id).first())
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


@router.get("/{resource_type}/{resource_id}")
def list_comments(resource_type: str, resource_id: str, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    rows = (db.query(Comment).options(joinedload(Comment.user))
            .filter(Comment.organization_id == user.organization_id,
                    Comment.resource_type == resource_type, Comment.resource_id == resource_id)
            .order_by(Comment.created_at, Comment.id).all())
    return [c.to_dict() for c in rows]


@router.post("", status_code=201)
def create_comment(body: CreateCommentBody, user: User = Depends(current_user), db: Session = Depends(get_db)):
    if body.parent_id is not None:
        parent = _get_comment(db, user, body.parent_id)
        if (parent.resource_type, parent.resource_id) != (body.resource_type, body.resource_id):
            raise HTTPException(status_code=400, detail="Parent comment belongs to another resource")
    comment = Comment(content=body.content, user_id=user.id, organization_id=user.organization_id,
                      resource_type=body.resource_type, resource_id=body.resource_id,
                      parent_id=body.parent_id)
    db.add(comment); db.commit()
    return comment.to_dict()


@router.put("/{comment_id}")
def update_comment(comment_id: int, body: UpdateCommentBody, user: User = Depends(current_user),
                   db: Session = Depends(get_db)):
    comment = _get_comment(db, user, comment_id)
    if comment.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to edit this comment")
    comment.content = body.content
    db.commit()
    return comment.to_dict()


@router.delete("/{comment_id}")
def delete_comment(comment_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    comment = _get_comment(db, user, comment_id)
    if comment.user_id != user.id and not is_owner_or_admin(user):
        raise HTTPException(status_code=403, detail="Not authorized to delete this comment")
    db.query(Comment).filter(Comment.parent_id == comment.id).delete(synchronize_session=False)
    db.delete(comment)
    db.commit()
    return {"message": "Comment deleted"}
