from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField
from wtforms.validators import DataRequired, Length

class LoginForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired(), Length(max=100)])
    password = PasswordField('Password', validators=[DataRequired()])

class ResetStatsForm(FlaskForm):
    confirm = BooleanField('Delete all visitors and country statistics',
                           validators=[DataRequired()])
